"""
RecipientAssignment model for gift donations.

Each row declares that one child is an intended recipient of one gift
donation. The ``delivered`` flag moves Pending -> Delivered exactly once.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from donation_ledger.utils.datetime_utils import utc_now

from .base import BaseModel


class RecipientAssignment(BaseModel):
    """
    Declared (gift donation, child) pair.

    Attributes:
        donation_id: Gift donation
        child_id: Declared recipient
        delivered: True once the gift has been handed over
        delivered_at: When ``delivered`` was set
    """

    __tablename__ = "recipient_assignments"

    donation_id = Column(
        Integer, ForeignKey("donations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    child_id = Column(
        Integer, ForeignKey("children.id", ondelete="CASCADE"), nullable=False, index=True
    )
    delivered = Column(Boolean, nullable=False, default=False)
    delivered_at = Column(DateTime, nullable=True)

    donation = relationship("GiftDonation", back_populates="recipient_assignments")
    child = relationship("Child")

    __table_args__ = (
        UniqueConstraint("donation_id", "child_id", name="uq_recipient_assignment_pair"),
        Index("idx_recipient_assignment_delivered", "donation_id", "delivered"),
    )

    @property
    def status(self) -> str:
        """Either "delivered" or "pending"."""
        return "delivered" if self.delivered else "pending"

    def mark_delivered(self) -> bool:
        """
        Transition to Delivered.

        Returns:
            True if the flag changed, False if it was already delivered
        """
        if self.delivered:
            return False
        self.delivered = True
        self.delivered_at = utc_now()
        return True

    def __repr__(self) -> str:
        return (
            f"RecipientAssignment(donation_id={self.donation_id}, "
            f"child_id={self.child_id}, delivered={self.delivered})"
        )
