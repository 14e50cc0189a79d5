"""
Inventory snapshot and stock movement ledger models.

Both tables are keyed by the lot key rather than by a purchase item id, so the
cascade engines locate their rows with ``medicine_id``/``batch_number``/
``expiry_date`` filters.
"""

from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)

from .base import BaseModel
from ..utils.constants import TRANSACTION_TYPE_PURCHASE, TRANSACTION_TYPES
from ..utils.datetime_utils import utc_now


class InventoryRecord(BaseModel):
    """
    Current on-hand stock for one lot (0 or 1 row per lot key).

    Attributes:
        medicine_id: Medicine (lot key part)
        batch_number: Batch number (lot key part)
        expiry_date: Expiry date (lot key part)
        current_stock: Units on hand
        last_purchase_rate: Most recent purchase rate for the lot
        current_mrp: Current maximum retail price
    """

    __tablename__ = "current_inventory"

    medicine_id = Column(
        Integer, ForeignKey("medicines.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    batch_number = Column(String(100), nullable=False)
    expiry_date = Column(Date, nullable=False)
    current_stock = Column(Integer, nullable=False, default=0)
    last_purchase_rate = Column(Numeric(10, 2), nullable=True)
    current_mrp = Column(Numeric(10, 2), nullable=True)

    __table_args__ = (
        Index("idx_current_inventory_lot", "medicine_id", "batch_number", "expiry_date"),
    )


class StockTransaction(BaseModel):
    """
    Stock movement ledger entry for one lot.

    Attributes:
        medicine_id: Medicine (lot key part)
        batch_number: Batch number (lot key part)
        expiry_date: Expiry date (lot key part)
        transaction_type: PURCHASE, SALE or ADJUSTMENT
        quantity_in: Units received
        quantity_out: Units issued
        rate: Unit rate of the movement
        amount: quantity_in * rate for purchase movements
        transaction_date: When the movement happened
    """

    __tablename__ = "stock_transactions"

    medicine_id = Column(
        Integer, ForeignKey("medicines.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    batch_number = Column(String(100), nullable=False)
    expiry_date = Column(Date, nullable=False)
    transaction_type = Column(String(20), nullable=False, default=TRANSACTION_TYPE_PURCHASE)
    quantity_in = Column(Integer, nullable=False, default=0)
    quantity_out = Column(Integer, nullable=False, default=0)
    rate = Column(Numeric(10, 2), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    transaction_date = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        CheckConstraint(
            "transaction_type IN (" + ", ".join(f"'{t}'" for t in TRANSACTION_TYPES) + ")",
            name="ck_stock_transaction_type_valid",
        ),
        Index("idx_stock_transaction_lot", "medicine_id", "batch_number", "expiry_date"),
    )
