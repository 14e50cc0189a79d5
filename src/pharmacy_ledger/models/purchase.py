"""
Purchase and PurchaseItem models.

A Purchase is one supplier invoice; each PurchaseItem is one purchased lot on
that invoice. The lot key ``(medicine_id, batch_number, expiry_date)`` ties a
purchase item to its inventory snapshot and stock ledger rows. Its uniqueness
is checked by the update engine, not by a table constraint.

Derived amounts (gross_amount, net_amount) are maintained by the store:
on SQLite the triggers below recompute them whenever quantity, rate or
discount change.
"""

from decimal import Decimal

from sqlalchemy import (
    DDL,
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    event,
)
from sqlalchemy.orm import relationship

from .base import BaseModel


class Purchase(BaseModel):
    """
    Purchase model representing one supplier invoice.

    Attributes:
        pharmacy_id: Owning pharmacy
        supplier_id: Supplier the invoice is from
        invoice_number: Supplier invoice number
        purchase_date: Invoice date
        total_amount: Sum of item net amounts (quantity * rate fallback),
            rewritten by the cascade engines after every item change

    Relationships:
        items: PurchaseItem lines on this invoice
    """

    __tablename__ = "purchases"

    pharmacy_id = Column(
        Integer, ForeignKey("pharmacies.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    supplier_id = Column(
        Integer, ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    invoice_number = Column(String(100), nullable=True)
    purchase_date = Column(Date, nullable=False, index=True)
    total_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    items = relationship("PurchaseItem", back_populates="purchase")

    def __repr__(self) -> str:
        """String representation of purchase."""
        return (
            f"Purchase(id={self.id}, "
            f"invoice_number='{self.invoice_number}', "
            f"total_amount={self.total_amount})"
        )


class PurchaseItem(BaseModel):
    """
    PurchaseItem model representing one purchased lot line.

    Attributes:
        purchase_id: Owning purchase
        medicine_id: Medicine purchased (lot key part)
        batch_number: Manufacturer batch number (lot key part)
        expiry_date: Lot expiry date (lot key part)
        quantity: Billed quantity
        free_quantity: Bonus quantity received free of charge
        purchase_rate: Price per unit paid
        mrp: Maximum retail price per unit
        discount_percent: Invoice discount applied to the gross amount
        gross_amount: quantity * purchase_rate (store-maintained)
        net_amount: gross_amount less discount (store-maintained)
    """

    __tablename__ = "purchase_items"

    purchase_id = Column(
        Integer, ForeignKey("purchases.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    medicine_id = Column(
        Integer, ForeignKey("medicines.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    batch_number = Column(String(100), nullable=False)
    expiry_date = Column(Date, nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=0)
    free_quantity = Column(Integer, nullable=False, default=0)
    purchase_rate = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    mrp = Column(Numeric(10, 2), nullable=True)
    discount_percent = Column(Numeric(5, 2), nullable=False, default=Decimal("0.00"))
    gross_amount = Column(Numeric(12, 2), nullable=True)
    net_amount = Column(Numeric(12, 2), nullable=True)

    purchase = relationship("Purchase", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_purchase_item_quantity_non_negative"),
        CheckConstraint("free_quantity >= 0", name="ck_purchase_item_free_non_negative"),
        Index("idx_purchase_item_lot", "medicine_id", "batch_number", "expiry_date"),
    )

    @property
    def lot_key(self) -> tuple:
        """The (medicine_id, batch_number, expiry_date) triple."""
        return (self.medicine_id, self.batch_number, self.expiry_date)

    def __repr__(self) -> str:
        """String representation of purchase item."""
        return (
            f"PurchaseItem(id={self.id}, "
            f"medicine_id={self.medicine_id}, "
            f"batch='{self.batch_number}', "
            f"expiry={self.expiry_date})"
        )


_AMOUNTS_SQL = (
    "UPDATE purchase_items SET "
    "gross_amount = NEW.quantity * NEW.purchase_rate, "
    "net_amount = ROUND(NEW.quantity * NEW.purchase_rate "
    "* (100 - COALESCE(NEW.discount_percent, 0)) / 100.0, 2) "
    "WHERE id = NEW.id;"
)

event.listen(
    PurchaseItem.__table__,
    "after_create",
    DDL(
        "CREATE TRIGGER IF NOT EXISTS trg_purchase_items_amounts_insert "
        "AFTER INSERT ON purchase_items "
        f"BEGIN {_AMOUNTS_SQL} END"
    ).execute_if(dialect="sqlite"),
)

event.listen(
    PurchaseItem.__table__,
    "after_create",
    DDL(
        "CREATE TRIGGER IF NOT EXISTS trg_purchase_items_amounts_update "
        "AFTER UPDATE OF quantity, purchase_rate, discount_percent ON purchase_items "
        f"BEGIN {_AMOUNTS_SQL} END"
    ).execute_if(dialect="sqlite"),
)
