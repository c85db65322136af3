"""
Location model.

Locations are owned by the surrounding record-management system; the ledger
only needs them as the owning side of donations and as the unit of actor
authorization.
"""

from sqlalchemy import Column, String, Text

from .base import BaseModel


class Location(BaseModel):
    """
    A site where donations are stored and delivered.

    Attributes:
        name: Display name of the location
        address: Optional street address
    """

    __tablename__ = "locations"

    name = Column(String(200), nullable=False, index=True)
    address = Column(Text, nullable=True)
