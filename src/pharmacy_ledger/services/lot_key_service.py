"""Lot Key Service - lot key resolution and shared reconciliation steps.

A lot is one purchased batch of one medicine, identified across
``purchase_items``, ``current_inventory`` and ``stock_transactions`` by the
lot key ``(medicine_id, batch_number, expiry_date)``.

The cascade engines snapshot an item's lot key *before* mutating anything:
dependent rows are found with the old key while the new values are written.
This module also holds the reconciliation steps shared by the update, delete
and retention cleanup engines:

- Purchase total recalculation (net amount, quantity * rate fallback)
- Orphan purchase removal
- Medicine reclamation by reference check
- Medicine find-or-create by exact name

All functions take the store as their first argument and keep no state.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Optional

from ..utils.constants import (
    MEDICINE_REFERENCE_TABLES,
    MEDICINES_TABLE,
    PLACEHOLDER_MANUFACTURER,
    PLACEHOLDER_UNIT_TYPE,
    PURCHASE_ITEMS_TABLE,
    PURCHASES_TABLE,
)
from .exceptions import PurchaseItemNotFound, StoreError
from .logging_utils import get_service_logger, log_operation
from .store import Store

logger = get_service_logger(__name__)

_LOT_SNAPSHOT_COLUMNS = [
    "id",
    "purchase_id",
    "medicine_id",
    "batch_number",
    "expiry_date",
    "quantity",
    "purchase_rate",
    "mrp",
]


@dataclass(frozen=True)
class LotKey:
    """The natural key of one lot."""

    medicine_id: Any
    batch_number: str
    expiry_date: date

    def as_filter(self) -> Dict[str, Any]:
        """Equality filter matching every row of this lot."""
        return {
            "medicine_id": self.medicine_id,
            "batch_number": self.batch_number,
            "expiry_date": self.expiry_date,
        }

    def as_tuple(self) -> tuple:
        return (self.medicine_id, self.batch_number, self.expiry_date)


@dataclass(frozen=True)
class LotSnapshot:
    """
    A purchase item's lot key and quantitative fields, read before mutation.

    Attributes:
        purchase_item_id: The item the snapshot was taken from
        purchase_id: Owning purchase
        lot_key: The item's current lot key
        quantity: Billed quantity
        purchase_rate: Unit purchase rate
        mrp: Maximum retail price
    """

    purchase_item_id: Any
    purchase_id: Any
    lot_key: LotKey
    quantity: int
    purchase_rate: Decimal
    mrp: Optional[Decimal]

    @property
    def medicine_id(self) -> Any:
        return self.lot_key.medicine_id

    @property
    def batch_number(self) -> str:
        return self.lot_key.batch_number

    @property
    def expiry_date(self) -> date:
        return self.lot_key.expiry_date


def resolve_lot_snapshot(store: Store, purchase_item_id: Any) -> LotSnapshot:
    """Read the current lot key and quantities of a purchase item.

    Args:
        store: Store to read from
        purchase_item_id: Purchase item identifier

    Returns:
        LotSnapshot: The item's lot key, purchase id, quantity, rate and MRP

    Raises:
        PurchaseItemNotFound: If the item does not exist
        StoreError: If the store read fails
    """
    rows = store.select(
        PURCHASE_ITEMS_TABLE,
        {"id": purchase_item_id},
        columns=_LOT_SNAPSHOT_COLUMNS,
        limit=1,
    )
    if not rows:
        raise PurchaseItemNotFound(purchase_item_id)

    row = rows[0]
    return LotSnapshot(
        purchase_item_id=row["id"],
        purchase_id=row["purchase_id"],
        lot_key=LotKey(row["medicine_id"], row["batch_number"], row["expiry_date"]),
        quantity=row["quantity"] or 0,
        purchase_rate=_to_decimal(row["purchase_rate"]),
        mrp=row["mrp"],
    )


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def item_amount(item: Mapping[str, Any]) -> Decimal:
    """Net amount of an item row, falling back to quantity * purchase_rate.

    A zero or missing net amount uses the fallback.
    """
    net_amount = _to_decimal(item.get("net_amount"))
    if net_amount:
        return net_amount
    return _to_decimal(item.get("quantity")) * _to_decimal(item.get("purchase_rate"))


def calculate_purchase_total(items: Iterable[Mapping[str, Any]]) -> Decimal:
    """Sum the amounts of a purchase's items.

    Example:
        >>> calculate_purchase_total([
        ...     {"quantity": 5, "purchase_rate": Decimal("10"), "net_amount": None},
        ...     {"quantity": 2, "purchase_rate": Decimal("20"), "net_amount": Decimal("40")},
        ... ])
        Decimal('90')
    """
    total = Decimal("0")
    for item in items:
        total += item_amount(item)
    return total


def _list_purchase_items(store: Store, purchase_id: Any) -> list:
    return store.select(
        PURCHASE_ITEMS_TABLE,
        {"purchase_id": purchase_id},
        columns=["id", "quantity", "purchase_rate", "gross_amount", "net_amount"],
    )


def recalculate_purchase_total(store: Store, purchase_id: Any) -> Decimal:
    """Recompute a purchase's total from all of its current items and store it.

    Returns:
        The new total

    Raises:
        StoreError: If reading the items or writing the total fails
    """
    items = _list_purchase_items(store, purchase_id)
    total = calculate_purchase_total(items)
    store.update(PURCHASES_TABLE, {"id": purchase_id}, {"total_amount": total})
    log_operation(
        logger,
        operation="recalculate_purchase_total",
        outcome="success",
        level=logging.DEBUG,
        purchase_id=purchase_id,
        total_amount=str(total),
    )
    return total


def reconcile_purchase(store: Store, purchase_id: Any) -> bool:
    """Delete a purchase with no items left, otherwise rewrite its total.

    Returns:
        True if the purchase was deleted as an orphan, False if its total
        was updated

    Raises:
        StoreError: If any store command fails
    """
    remaining = _list_purchase_items(store, purchase_id)
    if not remaining:
        deleted = store.delete(PURCHASES_TABLE, {"id": purchase_id})
        log_operation(
            logger,
            operation="reconcile_purchase",
            outcome="orphan_deleted",
            purchase_id=purchase_id,
            rows=deleted,
        )
        return deleted > 0

    total = calculate_purchase_total(remaining)
    store.update(PURCHASES_TABLE, {"id": purchase_id}, {"total_amount": total})
    log_operation(
        logger,
        operation="reconcile_purchase",
        outcome="total_updated",
        level=logging.DEBUG,
        purchase_id=purchase_id,
        remaining_items=len(remaining),
        total_amount=str(total),
    )
    return False


def is_medicine_referenced(store: Store, medicine_id: Any) -> bool:
    """Check whether any purchase item, inventory record or stock transaction
    still refers to a medicine.

    A failed check counts as "still referenced".
    """
    for table in MEDICINE_REFERENCE_TABLES:
        try:
            rows = store.select(table, {"medicine_id": medicine_id}, columns=["id"], limit=1)
        except StoreError as e:
            log_operation(
                logger,
                operation="is_medicine_referenced",
                outcome="check_failed",
                level=logging.WARNING,
                medicine_id=medicine_id,
                table=table,
                error=str(e),
            )
            return True
        if rows:
            return True
    return False


def release_medicine_if_unreferenced(store: Store, medicine_id: Any) -> bool:
    """Delete a medicine that nothing refers to any more.

    Best effort: a failed delete is logged and leaves the medicine for a
    later reclamation.

    Returns:
        True if the medicine row was deleted
    """
    if is_medicine_referenced(store, medicine_id):
        return False

    try:
        deleted = store.delete(MEDICINES_TABLE, {"id": medicine_id})
    except StoreError as e:
        log_operation(
            logger,
            operation="release_medicine",
            outcome="delete_failed",
            level=logging.WARNING,
            medicine_id=medicine_id,
            error=str(e),
        )
        return False

    log_operation(
        logger,
        operation="release_medicine",
        outcome="deleted" if deleted else "already_gone",
        medicine_id=medicine_id,
    )
    return deleted > 0


def find_or_create_medicine(store: Store, medicine_name: str) -> Any:
    """Return the id of the medicine named exactly ``medicine_name``.

    The lookup is an exact, case-sensitive match. A missing medicine is
    created with placeholder manufacturer and unit type.

    Raises:
        StoreError: If the lookup or the insert fails
    """
    existing = store.select(
        MEDICINES_TABLE, {"name": medicine_name}, columns=["id"], order_by=["id"], limit=1
    )
    if existing:
        return existing[0]["id"]

    created = store.insert(
        MEDICINES_TABLE,
        {
            "name": medicine_name,
            "generic_name": medicine_name,
            "manufacturer": PLACEHOLDER_MANUFACTURER,
            "unit_type": PLACEHOLDER_UNIT_TYPE,
            "is_active": True,
        },
    )
    log_operation(
        logger,
        operation="find_or_create_medicine",
        outcome="created",
        medicine_id=created["id"],
        medicine_name=medicine_name,
    )
    return created["id"]
