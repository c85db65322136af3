"""
Child model.

Children are the recipients of deliveries. The ledger treats them as opaque
foreign keys; only the owning location and the active flag matter here.
"""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from .base import BaseModel


class Child(BaseModel):
    """
    A child registered at a location.

    Attributes:
        name: Child's name
        location_id: Location the child is registered at (nullable)
        active: False once the child has left the program
    """

    __tablename__ = "children"

    name = Column(String(200), nullable=False, index=True)
    location_id = Column(
        Integer, ForeignKey("locations.id", ondelete="SET NULL"), nullable=True, index=True
    )
    active = Column(Boolean, nullable=False, default=True)

    location = relationship("Location")
