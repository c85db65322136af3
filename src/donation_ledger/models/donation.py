"""
Donation models.

This module contains:
- Donation: common columns for a supply of donated goods owned by a location
- StockDonation: anonymous stock consumed by quantity arithmetic
- GiftDonation: "Birthday Gift" donations tracked per declared recipient
- donation_class_for(): maps a category to its variant

The two consumption models share one table, distinguished by the ``kind``
discriminator (single-table inheritance), so code that handles gifts works on
GiftDonation instances and cannot be reached with plain stock.
"""

from typing import Optional, Type

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from donation_ledger.utils.constants import (
    DONATION_KIND_GIFT,
    DONATION_KIND_STOCK,
    GIFT_CATEGORY,
)
from donation_ledger.utils.datetime_utils import utc_now

from .base import BaseModel


class Donation(BaseModel):
    """
    A tracked or untracked supply of a good owned by one location.

    Attributes:
        location_id: Owning location
        donor_name: Who donated the goods
        category: Free-text type of donation ("Birthday Gift" is reserved)
        description: Optional description
        total_capacity: Cumulative amount ever made available, or None when
            the stock is untracked. Never decreases once set.
        unit: Free-text unit of measure
        donated_at: When the donation was received
        kind: Variant discriminator ("stock" or "gift")

    Remaining stock is not stored; see stock_service.get_stock_level().
    """

    __tablename__ = "donations"

    location_id = Column(
        Integer, ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    donor_name = Column(String(200), nullable=False)
    category = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    total_capacity = Column(Integer, nullable=True)
    unit = Column(String(50), nullable=True)
    donated_at = Column(DateTime, nullable=False, default=utc_now)
    kind = Column(String(20), nullable=False)

    location = relationship("Location")
    consumption_records = relationship(
        "ConsumptionRecord",
        back_populates="donation",
        lazy="select",
        passive_deletes=True,
    )

    __mapper_args__ = {"polymorphic_on": kind}

    __table_args__ = (
        Index("idx_donation_location", "location_id"),
        Index("idx_donation_kind", "kind"),
        CheckConstraint(
            "total_capacity IS NULL OR total_capacity >= 0",
            name="ck_donation_capacity_non_negative",
        ),
    )

    is_gift = False

    @property
    def is_tracked(self) -> bool:
        """True when total_capacity bounds the stock."""
        return self.total_capacity is not None

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(id={self.id}, category='{self.category}', "
            f"total_capacity={self.total_capacity})"
        )


class StockDonation(Donation):
    """Donation consumed anonymously by quantity."""

    __mapper_args__ = {"polymorphic_identity": DONATION_KIND_STOCK}


class GiftDonation(Donation):
    """
    "Birthday Gift" donation delivered to pre-declared recipients.

    Completion is signalled by the RecipientAssignment ``delivered`` flags;
    quantity arithmetic on a gift is informational only.
    """

    __mapper_args__ = {"polymorphic_identity": DONATION_KIND_GIFT}

    is_gift = True

    recipient_assignments = relationship(
        "RecipientAssignment",
        back_populates="donation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="RecipientAssignment.id",
    )

    def assignment_for(self, child_id: int) -> Optional["RecipientAssignment"]:  # noqa: F821
        """Return the declared assignment for a child, if any."""
        for assignment in self.recipient_assignments:
            if assignment.child_id == child_id:
                return assignment
        return None


def donation_class_for(category: str) -> Type[Donation]:
    """Return the Donation variant that handles ``category``."""
    if category == GIFT_CATEGORY:
        return GiftDonation
    return StockDonation
