"""Service layer exception classes for Pharmacy Ledger.

This module defines all custom exceptions used by the service layer to provide
consistent error handling across the application.

Exception Hierarchy:
    ServiceError (base)
    ├── PurchaseItemNotFound
    ├── LotKeyConflict
    ├── ValidationError
    └── StoreError
        └── TableMissing

Missing dependent rows (inventory snapshot, stock ledger) are not errors:
the store reports zero rows affected and the engines carry on.
"""

from typing import Any, List, Optional


class ServiceError(Exception):
    """Base exception for all service layer errors.

    Attributes:
        status_code: HTTP status a caller boundary should answer with
    """

    status_code = 500


class PurchaseItemNotFound(ServiceError):
    """Raised when a purchase item cannot be found by ID.

    Args:
        purchase_item_id: The purchase item ID that was not found

    Example:
        >>> raise PurchaseItemNotFound(456)
        PurchaseItemNotFound: Purchase item with ID 456 not found
    """

    status_code = 404

    def __init__(self, purchase_item_id: Any):
        self.purchase_item_id = purchase_item_id
        super().__init__(f"Purchase item with ID {purchase_item_id} not found")


class LotKeyConflict(ServiceError):
    """Raised when an update would give two purchase items the same lot key.

    Args:
        purchase_item_id: The item being updated
        conflicting_item_id: The item already holding the lot key
        lot_key: The (medicine_id, batch_number, expiry_date) triple

    Example:
        >>> raise LotKeyConflict(7, 3, (2, "B1", date(2025, 1, 1)))
        LotKeyConflict: Cannot update purchase item 7: purchase item 3 already
        has medicine 2, batch 'B1', expiry 2025-01-01
    """

    status_code = 409
    code = "DUPLICATE_ENTRY"

    def __init__(self, purchase_item_id: Any, conflicting_item_id: Any, lot_key: tuple):
        self.purchase_item_id = purchase_item_id
        self.conflicting_item_id = conflicting_item_id
        self.lot_key = lot_key
        medicine_id, batch_number, expiry_date = lot_key
        super().__init__(
            f"Cannot update purchase item {purchase_item_id}: purchase item "
            f"{conflicting_item_id} already has medicine {medicine_id}, "
            f"batch '{batch_number}', expiry {expiry_date}"
        )


class ValidationError(ServiceError):
    """Raised when caller-supplied data validation fails."""

    status_code = 400

    def __init__(self, errors: List[str]):
        self.errors = errors
        error_msg = "; ".join(errors)
        super().__init__(f"Validation failed: {error_msg}")


class StoreError(ServiceError):
    """Raised when a store command fails unexpectedly.

    Args:
        message: What the service was doing
        original_error: The underlying driver/SQLAlchemy exception
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.original_error = original_error
        super().__init__(f"Store error: {message}")


class TableMissing(StoreError):
    """Raised when a store command targets a table that does not exist.

    The retention cleanup treats this as zero rows affected.
    """

    def __init__(self, table: str, original_error: Optional[Exception] = None):
        self.table = table
        super().__init__(f"Could not find the table '{table}'", original_error=original_error)
