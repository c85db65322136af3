"""
ConsumptionRecord model for delivery events.

A consumption record states that one child received (or was marked absent
for) some amount of a donation. Records are append-only: the only mutation
path is administrative deletion.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.orm import relationship

from donation_ledger.services.exceptions import ImmutableRecordError
from donation_ledger.utils.datetime_utils import utc_now

from .base import BaseModel


class ConsumptionRecord(BaseModel):
    """
    ConsumptionRecord model representing one delivery event.

    This model is IMMUTABLE after creation - no updated_at field.

    Attributes:
        donation_id: Donation delivered (None for plain attendance)
        child_id: Recipient
        location_id: Location the delivery took place at
        batch_id: Identifier shared by every record of one batch submission
        attended: False records an absence
        amount_consumed: Units delivered; only set when attended and a
            donation is referenced
        notes: Optional free-text observations
        recorded_at: When the delivery happened
    """

    __tablename__ = "consumption_records"

    # Override BaseModel's updated_at - consumption records are immutable
    updated_at = None

    donation_id = Column(
        Integer, ForeignKey("donations.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    child_id = Column(
        Integer, ForeignKey("children.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    location_id = Column(
        Integer, ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    batch_id = Column(String(36), nullable=True, index=True)
    attended = Column(Boolean, nullable=False, default=True)
    amount_consumed = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    recorded_at = Column(DateTime, nullable=False, default=utc_now)

    donation = relationship("Donation", back_populates="consumption_records")
    child = relationship("Child")
    location = relationship("Location")

    __table_args__ = (
        Index("idx_consumption_donation_attended", "donation_id", "attended"),
        Index("idx_consumption_batch", "batch_id"),
        CheckConstraint(
            "amount_consumed IS NULL OR amount_consumed > 0",
            name="ck_consumption_amount_positive",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"ConsumptionRecord(id={self.id}, donation_id={self.donation_id}, "
            f"child_id={self.child_id}, attended={self.attended}, "
            f"amount={self.amount_consumed})"
        )


@event.listens_for(ConsumptionRecord, "before_update")
def _reject_consumption_update(mapper, connection, target):
    raise ImmutableRecordError(target.id)
