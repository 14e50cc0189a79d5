"""
Medicine model - the shared catalog entry referenced by every lot.

A medicine row is reclaimed once no purchase item, inventory record or stock
transaction refers to it. There is no reference counter column; the delete
engine checks for existing references instead.
"""

from sqlalchemy import Boolean, Column, Index, String

from .base import BaseModel


class Medicine(BaseModel):
    """
    Medicine catalog entry.

    Attributes:
        name: Display name; lookups by name are exact and case-sensitive
        generic_name: Generic (molecule) name
        manufacturer: Manufacturer name ("Unknown" for auto-created entries)
        unit_type: Dispensing unit (e.g., "strips", "bottles")
        is_active: Soft delete flag
    """

    __tablename__ = "medicines"

    name = Column(String(200), nullable=False)
    generic_name = Column(String(200), nullable=True)
    manufacturer = Column(String(200), nullable=True)
    unit_type = Column(String(50), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (Index("idx_medicine_name", "name"),)
