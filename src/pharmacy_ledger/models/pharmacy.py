"""
Pharmacy and Supplier models.

A pharmacy is the scope a retention cleanup runs for; suppliers are the
vendors named on purchase invoices.
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String

from .base import BaseModel


class Pharmacy(BaseModel):
    """
    Pharmacy model representing one store location.

    Attributes:
        name: Pharmacy display name
        is_active: Soft delete flag
        last_cleanup_date: When the retention cleanup last completed for this
            pharmacy (None until the first run)
    """

    __tablename__ = "pharmacies"

    name = Column(String(200), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    last_cleanup_date = Column(DateTime, nullable=True)


class Supplier(BaseModel):
    """
    Supplier model representing a vendor purchases are invoiced from.

    Attributes:
        pharmacy_id: Owning pharmacy
        name: Supplier name, unique per pharmacy by convention
    """

    __tablename__ = "suppliers"

    pharmacy_id = Column(
        Integer, ForeignKey("pharmacies.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    name = Column(String(200), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (Index("idx_supplier_pharmacy_name", "pharmacy_id", "name"),)
