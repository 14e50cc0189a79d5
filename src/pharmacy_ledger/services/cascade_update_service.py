"""Cascade Update Service - consistent edits of purchase line items.

Editing a purchase item touches four tables that the store does not keep in
step by itself:

1. ``purchase_items`` - the edited row (gross/net amounts are recomputed by
   the store)
2. ``current_inventory`` - the lot's stock snapshot, found by the OLD lot key
3. ``stock_transactions`` - the lot's ledger rows, found by the OLD lot key
4. ``purchases`` - the owning invoice total

The item write is the only fatal step after validation. Propagation to the
snapshot, the ledger and the invoice total is best effort: each step's
failure is logged, nothing already written is rolled back and the remaining
steps still run. Every propagation is an "update rows matching this lot key"
command, so re-running the same edit converges on the same state.

Example Usage:
    >>> from pharmacy_ledger.services.cascade_update_service import (
    ...     PurchaseItemChanges, update_purchase_item,
    ... )
    >>> item = update_purchase_item(store, 42, PurchaseItemChanges(quantity=12))
    >>> item["quantity"]
    12
"""

import logging
import re
from dataclasses import dataclass, fields as dataclass_fields
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Mapping, Optional

from ..utils.constants import (
    CURRENT_INVENTORY_TABLE,
    MEDICINES_TABLE,
    PURCHASE_ITEMS_TABLE,
    STOCK_TRANSACTIONS_TABLE,
    UNKNOWN_MEDICINE_NAME,
)
from ..utils.datetime_utils import parse_iso_date
from .exceptions import LotKeyConflict, PurchaseItemNotFound, StoreError, ValidationError
from .logging_utils import get_service_logger, log_operation
from .lot_key_service import (
    LotKey,
    LotSnapshot,
    find_or_create_medicine,
    recalculate_purchase_total,
    release_medicine_if_unreferenced,
    resolve_lot_snapshot,
)
from .store import Store, eq, neq

logger = get_service_logger(__name__)


def parse_free_quantity(value: Any) -> int:
    """Convert a free-quantity entry into a whole number of units.

    Entry forms accept free text such as ``"2 strips"``; the numeric part is
    kept and truncated. Anything without a usable number is zero.

    Example:
        >>> parse_free_quantity("2 strips")
        2
        >>> parse_free_quantity(3.7)
        3
        >>> parse_free_quantity("none")
        0
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        return int(value)
    numeric = re.sub(r"[^\d.]", "", str(value))
    try:
        return int(float(numeric))
    except ValueError:
        return 0


@dataclass(frozen=True)
class PurchaseItemChanges:
    """
    A partial set of field changes for one purchase item.

    ``None`` means "leave unchanged". ``medicine_name`` re-points the item at
    the catalog medicine with that exact name, creating it if needed.
    """

    quantity: Optional[int] = None
    free_quantity: Optional[int] = None
    purchase_rate: Optional[Decimal] = None
    mrp: Optional[Decimal] = None
    batch_number: Optional[str] = None
    expiry_date: Optional[date] = None
    medicine_name: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "PurchaseItemChanges":
        """Build changes from a request payload.

        Accepts string or numeric values; empty numeric entries are treated
        as unchanged. ``Free`` is accepted as an alias of ``free_quantity``.

        Raises:
            ValidationError: If a value cannot be parsed or is negative
        """
        errors = []

        def present(key: str) -> bool:
            value = payload.get(key)
            return value is not None and not (isinstance(value, str) and value.strip() == "")

        quantity = None
        if present("quantity"):
            try:
                quantity = int(Decimal(str(payload["quantity"]).strip()))
            except (InvalidOperation, ValueError):
                errors.append(f"quantity must be a whole number, got '{payload['quantity']}'")

        free_quantity = None
        free_key = "free_quantity" if "free_quantity" in payload else "Free"
        if free_key in payload:
            free_quantity = parse_free_quantity(payload[free_key])

        def money(key: str) -> Optional[Decimal]:
            if not present(key):
                return None
            try:
                return Decimal(str(payload[key]).strip())
            except InvalidOperation:
                errors.append(f"{key} must be a number, got '{payload[key]}'")
                return None

        purchase_rate = money("purchase_rate")
        mrp = money("mrp")

        expiry_date = None
        if present("expiry_date"):
            try:
                expiry_date = parse_iso_date(payload["expiry_date"])
            except ValueError:
                errors.append(f"expiry_date must be YYYY-MM-DD, got '{payload['expiry_date']}'")

        batch_number = payload.get("batch_number")
        medicine_name = payload.get("medicine_name") if present("medicine_name") else None

        if errors:
            raise ValidationError(errors)

        return cls(
            quantity=quantity,
            free_quantity=free_quantity,
            purchase_rate=purchase_rate,
            mrp=mrp,
            batch_number=None if batch_number is None else str(batch_number),
            expiry_date=expiry_date,
            medicine_name=medicine_name,
        )

    def __post_init__(self) -> None:
        """Reject negative quantities and rates."""
        errors = []
        for name in ("quantity", "free_quantity", "purchase_rate", "mrp"):
            value = getattr(self, name)
            if value is not None and value < 0:
                errors.append(f"{name} cannot be negative")
        if errors:
            raise ValidationError(errors)

    def item_fields(self) -> Dict[str, Any]:
        """Purchase item columns to write (everything except medicine_name)."""
        return {
            field.name: getattr(self, field.name)
            for field in dataclass_fields(self)
            if field.name != "medicine_name" and getattr(self, field.name) is not None
        }

    @property
    def is_empty(self) -> bool:
        return not self.item_fields() and self.medicine_name is None

    @property
    def changes_amounts(self) -> bool:
        """True if the invoice total may move (quantity, rate or MRP)."""
        return any(v is not None for v in (self.quantity, self.purchase_rate, self.mrp))


def get_purchase_item(store: Store, purchase_item_id: Any) -> Dict[str, Any]:
    """Fetch a purchase item row annotated with its medicine name.

    Raises:
        PurchaseItemNotFound: If the item does not exist
    """
    rows = store.select(PURCHASE_ITEMS_TABLE, {"id": purchase_item_id}, limit=1)
    if not rows:
        raise PurchaseItemNotFound(purchase_item_id)
    item = rows[0]
    medicines = store.select(
        MEDICINES_TABLE, {"id": item["medicine_id"]}, columns=["name"], limit=1
    )
    item["medicine_name"] = medicines[0]["name"] if medicines else UNKNOWN_MEDICINE_NAME
    return item


def _ensure_lot_key_available(store: Store, purchase_item_id: Any, candidate: LotKey) -> None:
    """Raise LotKeyConflict if another purchase item already holds ``candidate``."""
    conflicting = store.select(
        PURCHASE_ITEMS_TABLE,
        [neq("id", purchase_item_id), *_lot_conditions(candidate)],
        columns=["id"],
        limit=1,
    )
    if conflicting:
        raise LotKeyConflict(purchase_item_id, conflicting[0]["id"], candidate.as_tuple())


def _lot_conditions(key: LotKey) -> list:
    return [eq(column, value) for column, value in key.as_filter().items()]


def _inventory_fields(changes: PurchaseItemChanges, new_medicine_id: Optional[Any]) -> Dict[str, Any]:
    fields = {}
    if new_medicine_id is not None:
        fields["medicine_id"] = new_medicine_id
    if changes.batch_number is not None:
        fields["batch_number"] = changes.batch_number
    if changes.expiry_date is not None:
        fields["expiry_date"] = changes.expiry_date
    if changes.quantity is not None:
        fields["current_stock"] = changes.quantity
    if changes.purchase_rate is not None:
        fields["last_purchase_rate"] = changes.purchase_rate
    if changes.mrp is not None:
        fields["current_mrp"] = changes.mrp
    return fields


def _transaction_fields(
    changes: PurchaseItemChanges, snapshot: LotSnapshot, new_medicine_id: Optional[Any]
) -> Dict[str, Any]:
    fields = {}
    if new_medicine_id is not None:
        fields["medicine_id"] = new_medicine_id
    if changes.batch_number is not None:
        fields["batch_number"] = changes.batch_number
    if changes.expiry_date is not None:
        fields["expiry_date"] = changes.expiry_date
    if changes.quantity is not None:
        fields["quantity_in"] = changes.quantity
    if changes.purchase_rate is not None:
        fields["rate"] = changes.purchase_rate
    if changes.quantity is not None or changes.purchase_rate is not None:
        quantity = changes.quantity if changes.quantity is not None else snapshot.quantity
        rate = changes.purchase_rate if changes.purchase_rate is not None else snapshot.purchase_rate
        fields["amount"] = Decimal(str(quantity)) * Decimal(str(rate))
    return fields


def _best_effort(step: str, purchase_item_id: Any, action: Callable[[], Any]) -> bool:
    """Run one propagation step; log and swallow store failures."""
    try:
        rows = action()
    except StoreError as e:
        log_operation(
            logger,
            operation=step,
            outcome="failed",
            level=logging.WARNING,
            purchase_item_id=purchase_item_id,
            error=str(e),
        )
        return False
    log_operation(
        logger,
        operation=step,
        outcome="success",
        level=logging.DEBUG,
        purchase_item_id=purchase_item_id,
        rows=rows,
    )
    return True


def update_purchase_item(
    store: Store, purchase_item_id: Any, changes: PurchaseItemChanges
) -> Dict[str, Any]:
    """Apply a partial edit to a purchase item and cascade it.

    Steps, in order:

    1. Snapshot the item's current lot key and quantities.
    2. Resolve a medicine name change to a medicine id (find or create),
       then reject the edit if another item already holds the resulting
       lot key.
    3. Write the accepted fields to the item in one command.
    4. Update the lot's inventory snapshot (matched by the old lot key).
    5. Update the lot's stock transactions (matched by the old lot key),
       recomputing ``amount`` when quantity or rate changed.
    6. Recompute the owning purchase's total when quantity, rate or MRP
       changed.
    7. Reclaim the previous medicine if the edit left it unreferenced.

    Steps 4-7 are best effort and independent of each other.

    Args:
        store: Store to operate on
        purchase_item_id: Item to edit
        changes: Fields to change

    Returns:
        The updated item row, annotated with ``medicine_name``

    Raises:
        PurchaseItemNotFound: If the item does not exist
        LotKeyConflict: If the edited lot key belongs to another item; the
            item is left unchanged
        StoreError: If the snapshot, medicine resolution or item write fails
    """
    snapshot = resolve_lot_snapshot(store, purchase_item_id)

    if changes.is_empty:
        return get_purchase_item(store, purchase_item_id)

    fields = changes.item_fields()
    new_medicine_id = snapshot.medicine_id
    if changes.medicine_name is not None:
        new_medicine_id = find_or_create_medicine(store, changes.medicine_name)
        fields["medicine_id"] = new_medicine_id

    candidate = LotKey(
        new_medicine_id,
        changes.batch_number if changes.batch_number is not None else snapshot.batch_number,
        changes.expiry_date if changes.expiry_date is not None else snapshot.expiry_date,
    )
    if candidate != snapshot.lot_key:
        try:
            _ensure_lot_key_available(store, purchase_item_id, candidate)
        except LotKeyConflict as e:
            log_operation(
                logger,
                operation="update_purchase_item",
                outcome="conflict",
                level=logging.WARNING,
                purchase_item_id=purchase_item_id,
                conflicting_item_id=e.conflicting_item_id,
            )
            raise

    affected = store.update(PURCHASE_ITEMS_TABLE, {"id": purchase_item_id}, fields)
    if affected == 0:
        raise PurchaseItemNotFound(purchase_item_id)

    medicine_changed = new_medicine_id != snapshot.medicine_id
    moved_medicine_id = new_medicine_id if medicine_changed else None
    old_lot_filter = snapshot.lot_key.as_filter()

    inventory_fields = _inventory_fields(changes, moved_medicine_id)
    if inventory_fields:
        _best_effort(
            "propagate_inventory",
            purchase_item_id,
            lambda: store.update(CURRENT_INVENTORY_TABLE, old_lot_filter, inventory_fields),
        )

    transaction_fields = _transaction_fields(changes, snapshot, moved_medicine_id)
    if transaction_fields:
        _best_effort(
            "propagate_stock_transactions",
            purchase_item_id,
            lambda: store.update(STOCK_TRANSACTIONS_TABLE, old_lot_filter, transaction_fields),
        )

    if changes.changes_amounts:
        _best_effort(
            "recalculate_purchase_total",
            purchase_item_id,
            lambda: recalculate_purchase_total(store, snapshot.purchase_id),
        )

    if medicine_changed:
        release_medicine_if_unreferenced(store, snapshot.medicine_id)

    log_operation(
        logger,
        operation="update_purchase_item",
        outcome="success",
        purchase_item_id=purchase_item_id,
        purchase_id=snapshot.purchase_id,
        fields=sorted(fields),
    )
    return get_purchase_item(store, purchase_item_id)
