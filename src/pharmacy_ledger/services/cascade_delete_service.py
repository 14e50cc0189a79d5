"""Cascade Delete Service - removing purchase line items and their dependents.

Deleting a purchase item is an ordered sequence of independent store
commands:

1. Snapshot the item's lot key and owning purchase
2. Delete the purchase item row
3. Delete the lot's inventory snapshot (0 or 1 row)
4. Delete the lot's stock transactions (0 or more rows)
5. Delete the medicine if no row refers to it any more
6. Delete the purchase if it has no items left, otherwise rewrite its total

Steps 3-6 are expressed as "delete/update rows matching this key", so a run
interrupted half way can simply be repeated. The retention cleanup drives
the same steps through :func:`delete_lot_rows` in strict mode.

Bulk deletes process ids one at a time and isolate failures per id.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Union

from ..utils.constants import CURRENT_INVENTORY_TABLE, PURCHASE_ITEMS_TABLE, STOCK_TRANSACTIONS_TABLE
from .exceptions import ServiceError, StoreError, TableMissing, ValidationError
from .logging_utils import get_service_logger, log_operation
from .lot_key_service import (
    LotKey,
    reconcile_purchase,
    release_medicine_if_unreferenced,
    resolve_lot_snapshot,
)
from .store import Store

logger = get_service_logger(__name__)


@dataclass
class LotDeletion:
    """Rows removed while deleting one purchase item and its dependents."""

    purchase_item_id: Any
    purchase_id: Any
    medicine_id: Any
    purchase_items: int = 0
    current_inventory: int = 0
    stock_transactions: int = 0
    purchase_deleted: bool = False
    medicine_deleted: bool = False


@dataclass
class BulkDeleteResult:
    """Outcome of a multi-id delete.

    Attributes:
        deleted_items: Ids deleted successfully, in request order
        failed_items: ``{"id": ..., "reason": ...}`` for every id that failed
    """

    deleted_items: List[Any] = field(default_factory=list)
    failed_items: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def deleted(self) -> int:
        return len(self.deleted_items)

    @property
    def failed(self) -> int:
        return len(self.failed_items)

    def to_dict(self) -> Dict[str, Any]:
        """Response body for the bulk delete caller."""
        result = {
            "success": True,
            "deleted": self.deleted,
            "failed": self.failed,
            "deletedItems": list(self.deleted_items),
        }
        if self.failed_items:
            result["failedItems"] = list(self.failed_items)
        return result


def _coerce_item_id(raw: Any) -> Any:
    if isinstance(raw, str):
        raw = raw.strip()
        if raw.isdigit():
            return int(raw)
    return raw


def parse_item_ids(raw: Union[str, Iterable[Any]]) -> List[Any]:
    """Split a comma-separated id list (or iterable of ids), dropping blanks.

    Example:
        >>> parse_item_ids("12, 15,,abc ")
        [12, 15, 'abc']

    Raises:
        ValidationError: If no id remains
    """
    parts = raw.split(",") if isinstance(raw, str) else list(raw)
    ids = [_coerce_item_id(part) for part in parts if str(part).strip()]
    if not ids:
        raise ValidationError(["No valid purchase item IDs provided"])
    return ids


def _delete_dependents(store: Store, table: str, lot_key: LotKey, purchase_item_id: Any, strict: bool) -> int:
    """Delete one dependent table's rows for a lot.

    Non-strict (interactive) mode logs and ignores any store failure. Strict
    (cleanup) mode only forgives a missing table and re-raises other errors.
    """
    try:
        return store.delete(table, lot_key.as_filter())
    except TableMissing as e:
        log_operation(
            logger,
            operation="delete_dependents",
            outcome="table_missing",
            level=logging.WARNING,
            table=table,
            purchase_item_id=purchase_item_id,
            error=str(e),
        )
        return 0
    except StoreError as e:
        if strict:
            raise
        log_operation(
            logger,
            operation="delete_dependents",
            outcome="failed",
            level=logging.WARNING,
            table=table,
            purchase_item_id=purchase_item_id,
            error=str(e),
        )
        return 0


def delete_lot_rows(
    store: Store,
    purchase_item_id: Any,
    purchase_id: Any,
    lot_key: LotKey,
    strict: bool = False,
) -> LotDeletion:
    """Delete a purchase item, its lot's dependent rows, and reconcile parents.

    Args:
        store: Store to operate on
        purchase_item_id: Item to delete
        purchase_id: The item's purchase (read before the delete)
        lot_key: The item's lot key (read before the delete)
        strict: If True, dependent-table failures other than a missing table
            are raised instead of logged

    Returns:
        LotDeletion: Row counts and parent outcomes

    Raises:
        StoreError: If deleting the item or reconciling the purchase fails
            (and, in strict mode, if a dependent delete fails)
    """
    outcome = LotDeletion(
        purchase_item_id=purchase_item_id,
        purchase_id=purchase_id,
        medicine_id=lot_key.medicine_id,
    )

    outcome.purchase_items = store.delete(PURCHASE_ITEMS_TABLE, {"id": purchase_item_id})
    outcome.current_inventory = _delete_dependents(
        store, CURRENT_INVENTORY_TABLE, lot_key, purchase_item_id, strict
    )
    outcome.stock_transactions = _delete_dependents(
        store, STOCK_TRANSACTIONS_TABLE, lot_key, purchase_item_id, strict
    )
    outcome.medicine_deleted = release_medicine_if_unreferenced(store, lot_key.medicine_id)
    outcome.purchase_deleted = reconcile_purchase(store, purchase_id)

    log_operation(
        logger,
        operation="delete_lot_rows",
        outcome="success",
        level=logging.DEBUG,
        purchase_item_id=purchase_item_id,
        purchase_id=purchase_id,
        current_inventory=outcome.current_inventory,
        stock_transactions=outcome.stock_transactions,
        purchase_deleted=outcome.purchase_deleted,
        medicine_deleted=outcome.medicine_deleted,
    )
    return outcome


def delete_purchase_item(store: Store, purchase_item_id: Any) -> LotDeletion:
    """Delete one purchase item and cascade to its dependents and parents.

    Args:
        store: Store to operate on
        purchase_item_id: Item to delete

    Returns:
        LotDeletion: What was removed

    Raises:
        PurchaseItemNotFound: If the item does not exist
        StoreError: If deleting the item or reconciling its purchase fails;
            steps already completed stay completed
    """
    purchase_item_id = _coerce_item_id(purchase_item_id)
    snapshot = resolve_lot_snapshot(store, purchase_item_id)
    outcome = delete_lot_rows(store, purchase_item_id, snapshot.purchase_id, snapshot.lot_key)

    log_operation(
        logger,
        operation="delete_purchase_item",
        outcome="success",
        purchase_item_id=purchase_item_id,
        purchase_id=snapshot.purchase_id,
        purchase_deleted=outcome.purchase_deleted,
    )
    return outcome


def delete_purchase_items(
    store: Store, purchase_item_ids: Union[str, Iterable[Any]]
) -> BulkDeleteResult:
    """Delete several purchase items one after another.

    Each id is processed with :func:`delete_purchase_item`; a failing id is
    recorded with its reason and the loop moves on to the next id.

    Args:
        store: Store to operate on
        purchase_item_ids: Ids, or a comma-separated string of ids

    Returns:
        BulkDeleteResult: Deleted ids and ``{id, reason}`` failures

    Raises:
        ValidationError: If no id is given
    """
    result = BulkDeleteResult()

    for item_id in parse_item_ids(purchase_item_ids):
        try:
            delete_purchase_item(store, item_id)
        except ServiceError as e:
            result.failed_items.append({"id": item_id, "reason": str(e)})
            continue
        except Exception as e:
            logger.exception(f"Unexpected error deleting purchase item {item_id}")
            result.failed_items.append({"id": item_id, "reason": str(e) or type(e).__name__})
            continue
        result.deleted_items.append(item_id)

    log_operation(
        logger,
        operation="delete_purchase_items",
        outcome="success" if not result.failed_items else "partial",
        deleted=result.deleted,
        failed=result.failed,
    )
    return result
