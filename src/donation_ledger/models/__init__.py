"""
Database models package.

This package contains all SQLAlchemy ORM models for the ledger.
"""

from .base import Base, BaseModel
from .location import Location
from .child import Child
from .donation import Donation, StockDonation, GiftDonation, donation_class_for
from .consumption_record import ConsumptionRecord, ImmutableRecordError
from .recipient_assignment import RecipientAssignment

__all__ = [
    "Base",
    "BaseModel",
    # Collaborator-owned entities
    "Location",
    "Child",
    # Ledger
    "Donation",
    "StockDonation",
    "GiftDonation",
    "donation_class_for",
    "ConsumptionRecord",
    "ImmutableRecordError",
    "RecipientAssignment",
]
