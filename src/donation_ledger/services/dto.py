"""Data Transfer Objects for the ledger service layer.

Requests coming from the surrounding API layer and results handed back to it.
Results hold plain values (and detached, fully loaded records) so they stay
usable after the session that produced them is closed.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from donation_ledger.models import ConsumptionRecord


@dataclass
class DeliveryEntry:
    """One proposed delivery event.

    Attributes:
        child_id: Recipient
        location_id: Location the delivery happens at
        donation_id: Donation delivered, or None for plain attendance
        attended: False records an absence; absences never consume stock
        amount: Units requested; None means the default of one unit
        notes: Optional free-text observations
    """

    child_id: int
    location_id: int
    donation_id: Optional[int] = None
    attended: bool = True
    amount: Optional[int] = None
    notes: Optional[str] = None

    @property
    def consumes_stock(self) -> bool:
        """True when this entry draws from a donation's stock."""
        return self.donation_id is not None and self.attended is not False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DeliveryEntry":
        """Build an entry from an API payload; a missing or null ``attended`` means present."""
        attended = data.get("attended")
        return cls(
            child_id=data.get("child_id"),
            location_id=data.get("location_id"),
            donation_id=data.get("donation_id"),
            attended=True if attended is None else attended,
            amount=data.get("amount"),
            notes=data.get("notes"),
        )


@dataclass
class DeliveryResult:
    """Outcome of submit_batch / submit_one.

    Attributes:
        records: Consumption records created, in entry order
        batch_id: Shared batch identifier, or None for single submissions
    """

    records: List[ConsumptionRecord]
    batch_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "records": [record.to_dict() for record in self.records],
        }


@dataclass
class StockLevel:
    """Derived stock for one donation.

    ``remaining`` is None when the donation is untracked (null capacity).
    """

    donation_id: int
    kind: str
    total_capacity: Optional[int]
    total_consumed: int
    remaining: Optional[int]

    @property
    def is_tracked(self) -> bool:
        return self.total_capacity is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "donation_id": self.donation_id,
            "kind": self.kind,
            "total_capacity": self.total_capacity,
            "total_consumed": self.total_consumed,
            "remaining": self.remaining,
        }


@dataclass
class SupplyChange:
    """Before/after view of one add_supply call.

    Attributes:
        donation_id: Donation replenished
        added: Amount supplied by the caller
        first_capacity: True when the donation had no capacity before and
            ``added`` became its capacity
        capacity_before: Capacity before the call (None if untracked)
        capacity_after: Capacity after the call
        consumed: Attended consumption at the time of the call
        remaining_before: Remaining stock before (None if untracked)
        remaining_after: Remaining stock after
    """

    donation_id: int
    added: int
    first_capacity: bool
    capacity_before: Optional[int]
    capacity_after: int
    consumed: int
    remaining_before: Optional[int]
    remaining_after: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "donation_id": self.donation_id,
            "added": self.added,
            "first_capacity": self.first_capacity,
            "capacity_before": self.capacity_before,
            "capacity_after": self.capacity_after,
            "consumed": self.consumed,
            "remaining_before": self.remaining_before,
            "remaining_after": self.remaining_after,
        }


@dataclass
class GiftProgress:
    """Delivery coverage of a gift donation's declared recipients."""

    donation_id: int
    declared: int
    delivered: int
    pending_child_ids: List[int] = field(default_factory=list)

    @property
    def pending(self) -> int:
        return self.declared - self.delivered

    @property
    def is_complete(self) -> bool:
        return self.declared > 0 and self.delivered == self.declared


@dataclass
class ConsumptionSummary:
    """Attended consumption history of a donation within an optional date window.

    Attributes:
        stock: Current stock level over the donation's whole history
        records: Attended records in the window, newest first
        total_deliveries: Number of records in the window
        total_consumed: Units consumed in the window (absent amounts count as one)
        distinct_children: Distinct children served in the window
    """

    stock: StockLevel
    records: List[Dict[str, Any]]
    total_deliveries: int
    total_consumed: int
    distinct_children: int
