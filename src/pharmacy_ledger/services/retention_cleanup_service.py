"""Retention Cleanup Service - yearly purge of long-expired lots.

A lot whose expiry date is older than the retention horizon is purged from
all four ledger tables. The horizon is January 1 of
``(current year - retention_years)``:

    >>> calculate_cutoff_date(retention_years=2, today=date(2026, 6, 1))
    datetime.date(2024, 1, 1)

Each expired purchase item is a "batch". Batches are processed one at a time,
in expiry order, through the same steps as an interactive delete
(:func:`~pharmacy_ledger.services.cascade_delete_service.delete_lot_rows`),
in strict mode: a missing inventory or ledger table counts as zero rows, any
other store failure aborts the run.

Re-running a cleanup is safe: purged batches no longer match the expiry
filter, so a second run with the same cutoff finds nothing.

Key Features:
- Cutoff calculation from the configured retention period
- Optional pharmacy scope (only that pharmacy's purchases are purged)
- Per-table deletion totals
- Last-cleanup timestamp stamping per pharmacy
- Dry-run preview with estimated per-table counts
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterator, List, Optional, Sequence

from ..utils.config import get_config
from ..utils.constants import (
    CURRENT_INVENTORY_TABLE,
    IN_CLAUSE_CHUNK_SIZE,
    MEDICINES_TABLE,
    PHARMACIES_TABLE,
    PURCHASE_ITEMS_TABLE,
    PURCHASES_TABLE,
    STOCK_TRANSACTIONS_TABLE,
    UNKNOWN_MEDICINE_NAME,
)
from ..utils.datetime_utils import format_date, utc_now
from .cascade_delete_service import delete_lot_rows
from .exceptions import StoreError, TableMissing, ValidationError
from .logging_utils import get_service_logger, log_operation
from .lot_key_service import LotKey
from .store import Store, in_, lt, not_null

logger = get_service_logger(__name__)


@dataclass(frozen=True)
class ExpiredBatch:
    """One expired purchase item selected for purging."""

    purchase_item_id: Any
    purchase_id: Any
    medicine_id: Any
    batch_number: str
    expiry_date: date
    medicine_name: str = UNKNOWN_MEDICINE_NAME

    @property
    def lot_key(self) -> LotKey:
        return LotKey(self.medicine_id, self.batch_number, self.expiry_date)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "purchase_item_id": self.purchase_item_id,
            "purchase_id": self.purchase_id,
            "medicine_id": self.medicine_id,
            "medicine_name": self.medicine_name,
            "batch_number": self.batch_number,
            "expiry_date": format_date(self.expiry_date),
        }


@dataclass
class DeletionStats:
    """Running per-table deletion totals."""

    current_inventory: int = 0
    stock_transactions: int = 0
    purchase_items: int = 0
    purchases: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "current_inventory": self.current_inventory,
            "stock_transactions": self.stock_transactions,
            "purchase_items": self.purchase_items,
            "purchases": self.purchases,
        }


@dataclass
class CleanupResult:
    """Outcome of a cleanup run.

    A failed run carries the error message and the cutoff that was used, and
    reports zero counts even if some batches had already been purged.
    """

    success: bool
    message: str
    cutoff_date: Optional[date]
    batches_processed: int = 0
    stats: DeletionStats = field(default_factory=DeletionStats)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Response body for the cleanup caller."""
        result = {
            "success": self.success,
            "message": self.message,
            "cutoffDate": format_date(self.cutoff_date) if self.cutoff_date else None,
            "batchesProcessed": self.batches_processed,
            "stats": self.stats.to_dict(),
        }
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class CleanupPreview:
    """What a cleanup run would delete (dry run)."""

    cutoff_date: date
    batches: List[ExpiredBatch]
    estimated: DeletionStats

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dryRun": True,
            "cutoffDate": format_date(self.cutoff_date),
            "batchesFound": len(self.batches),
            "batches": [batch.to_dict() for batch in self.batches],
            "estimated": self.estimated.to_dict(),
        }


def calculate_cutoff_date(
    retention_years: Optional[int] = None, today: Optional[date] = None
) -> date:
    """January 1 of ``(today.year - retention_years)``.

    Args:
        retention_years: Retention period; defaults to the configured value
        today: Reference date; defaults to the current date

    Raises:
        ValidationError: If retention_years is negative
    """
    if retention_years is None:
        retention_years = get_config().retention_years
    if retention_years < 0:
        raise ValidationError([f"retention_years cannot be negative, got {retention_years}"])
    if today is None:
        today = date.today()
    return date(today.year - retention_years, 1, 1)


def _chunked(values: Sequence[Any]) -> Iterator[Sequence[Any]]:
    for start in range(0, len(values), IN_CLAUSE_CHUNK_SIZE):
        yield values[start:start + IN_CLAUSE_CHUNK_SIZE]


def _select_expired_items(store: Store, conditions: list) -> List[Dict[str, Any]]:
    return store.select(
        PURCHASE_ITEMS_TABLE,
        conditions,
        columns=["id", "purchase_id", "medicine_id", "batch_number", "expiry_date"],
        order_by=["expiry_date", "id"],
    )


def _scope_purchase_ids(store: Store, pharmacy_id: Any) -> List[Any]:
    rows = store.select(PURCHASES_TABLE, {"pharmacy_id": pharmacy_id}, columns=["id"])
    return [row["id"] for row in rows]


def fetch_expired_batches(
    store: Store, cutoff_date: date, pharmacy_id: Optional[Any] = None
) -> List[ExpiredBatch]:
    """List purchase items expiring strictly before ``cutoff_date``.

    Ordered by expiry date ascending (then id), each annotated with its
    medicine name.

    Args:
        store: Store to read from
        cutoff_date: Exclusive upper bound on expiry date
        pharmacy_id: If given, only items of this pharmacy's purchases

    Raises:
        StoreError: If a read fails
    """
    expired = lt("expiry_date", cutoff_date)
    if pharmacy_id is None:
        rows = _select_expired_items(store, [expired])
    else:
        purchase_ids = _scope_purchase_ids(store, pharmacy_id)
        rows = []
        for chunk in _chunked(purchase_ids):
            rows.extend(_select_expired_items(store, [expired, in_("purchase_id", chunk)]))
        rows.sort(key=lambda row: (row["expiry_date"], row["id"]))
    if not rows:
        return []

    names = {}
    for chunk in _chunked(sorted({row["medicine_id"] for row in rows})):
        for row in store.select(MEDICINES_TABLE, [in_("id", chunk)], columns=["id", "name"]):
            names[row["id"]] = row["name"]

    return [
        ExpiredBatch(
            purchase_item_id=row["id"],
            purchase_id=row["purchase_id"],
            medicine_id=row["medicine_id"],
            batch_number=row["batch_number"],
            expiry_date=row["expiry_date"],
            medicine_name=names.get(row["medicine_id"]) or UNKNOWN_MEDICINE_NAME,
        )
        for row in rows
    ]


def update_last_cleanup_date(store: Store, pharmacy_id: Optional[Any] = None) -> int:
    """Stamp ``last_cleanup_date`` on one pharmacy, or on all when no scope is given.

    A failure is logged and swallowed: the purge itself already succeeded.

    Returns:
        Number of pharmacies stamped
    """
    filters = {"id": pharmacy_id} if pharmacy_id is not None else [not_null("id")]
    try:
        return store.update(PHARMACIES_TABLE, filters, {"last_cleanup_date": utc_now()})
    except StoreError as e:
        log_operation(
            logger,
            operation="update_last_cleanup_date",
            outcome="failed",
            level=logging.WARNING,
            pharmacy_id=pharmacy_id,
            error=str(e),
        )
        return 0


def _purge_batch(store: Store, batch: ExpiredBatch, stats: DeletionStats) -> None:
    outcome = delete_lot_rows(
        store,
        batch.purchase_item_id,
        batch.purchase_id,
        batch.lot_key,
        strict=True,
    )
    stats.current_inventory += outcome.current_inventory
    stats.stock_transactions += outcome.stock_transactions
    stats.purchase_items += outcome.purchase_items
    if outcome.purchase_deleted:
        stats.purchases += 1


def cleanup_expired_batches(
    store: Store,
    pharmacy_id: Optional[Any] = None,
    retention_years: Optional[int] = None,
    today: Optional[date] = None,
) -> CleanupResult:
    """Purge every lot that expired before the retention cutoff.

    Never raises: an aborted run is reported as ``success=False``.

    Args:
        store: Store to operate on
        pharmacy_id: Optional pharmacy scope; None cleans every pharmacy
        retention_years: Retention period; defaults to the configured value
        today: Reference date for the cutoff; defaults to the current date

    Returns:
        CleanupResult: Cutoff used, batches processed and per-table totals
    """
    cutoff_date = None
    try:
        cutoff_date = calculate_cutoff_date(retention_years, today)
        batches = fetch_expired_batches(store, cutoff_date, pharmacy_id)

        if not batches:
            update_last_cleanup_date(store, pharmacy_id)
            log_operation(
                logger,
                operation="cleanup_expired_batches",
                outcome="nothing_to_delete",
                pharmacy_id=pharmacy_id,
                cutoff_date=format_date(cutoff_date),
            )
            return CleanupResult(
                success=True,
                message="No expired medicine batches found to delete",
                cutoff_date=cutoff_date,
            )

        stats = DeletionStats()
        for batch in batches:
            _purge_batch(store, batch, stats)

        update_last_cleanup_date(store, pharmacy_id)

    except Exception as e:
        log_operation(
            logger,
            operation="cleanup_expired_batches",
            outcome="failed",
            level=logging.ERROR,
            pharmacy_id=pharmacy_id,
            error=str(e),
        )
        return CleanupResult(
            success=False,
            message="Cleanup failed",
            cutoff_date=cutoff_date,
            error=str(e) or "An error occurred during cleanup",
        )

    log_operation(
        logger,
        operation="cleanup_expired_batches",
        outcome="success",
        pharmacy_id=pharmacy_id,
        cutoff_date=format_date(cutoff_date),
        batches_processed=len(batches),
        **{f"deleted_{table}": count for table, count in stats.to_dict().items()},
    )
    return CleanupResult(
        success=True,
        message="Cleanup completed successfully",
        cutoff_date=cutoff_date,
        batches_processed=len(batches),
        stats=stats,
    )


def _count_or_zero(store: Store, table: str, lot_key: LotKey) -> int:
    try:
        return len(store.select(table, lot_key.as_filter(), columns=["id"]))
    except TableMissing:
        return 0


def preview_expired_batches(
    store: Store,
    pharmacy_id: Optional[Any] = None,
    retention_years: Optional[int] = None,
    today: Optional[date] = None,
) -> CleanupPreview:
    """Dry run: report what :func:`cleanup_expired_batches` would delete.

    Reads only. Estimated purchases are those whose every item is expired.

    Raises:
        StoreError: If a read fails
        ValidationError: If retention_years is negative
    """
    cutoff_date = calculate_cutoff_date(retention_years, today)
    batches = fetch_expired_batches(store, cutoff_date, pharmacy_id)

    estimated = DeletionStats(purchase_items=len(batches))
    seen_lots = set()
    for batch in batches:
        if batch.lot_key in seen_lots:
            continue
        seen_lots.add(batch.lot_key)
        estimated.current_inventory += _count_or_zero(store, CURRENT_INVENTORY_TABLE, batch.lot_key)
        estimated.stock_transactions += _count_or_zero(
            store, STOCK_TRANSACTIONS_TABLE, batch.lot_key
        )

    expired_by_purchase: Dict[Any, int] = {}
    for batch in batches:
        expired_by_purchase[batch.purchase_id] = expired_by_purchase.get(batch.purchase_id, 0) + 1
    for purchase_id, expired_count in expired_by_purchase.items():
        total = len(store.select(PURCHASE_ITEMS_TABLE, {"purchase_id": purchase_id}, columns=["id"]))
        if total == expired_count:
            estimated.purchases += 1

    log_operation(
        logger,
        operation="preview_expired_batches",
        outcome="success",
        pharmacy_id=pharmacy_id,
        cutoff_date=format_date(cutoff_date),
        batches_found=len(batches),
    )
    return CleanupPreview(cutoff_date=cutoff_date, batches=batches, estimated=estimated)
