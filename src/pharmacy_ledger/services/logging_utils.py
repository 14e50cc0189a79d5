"""Service layer logging utilities.

Provides structured logging functions for service operations, enabling
consistent log format and context across the cascade and cleanup engines.

Usage:
    from pharmacy_ledger.services.logging_utils import get_service_logger, log_operation

    logger = get_service_logger(__name__)

    log_operation(
        logger,
        operation="delete_purchase_item",
        outcome="success",
        purchase_item_id=123,
        purchase_id=45,
    )

    log_operation(
        logger,
        operation="propagate_inventory",
        outcome="failed",
        level=logging.WARNING,
        purchase_item_id=123,
        error="connection reset",
    )
"""

import logging
from typing import Any


def get_service_logger(name: str) -> logging.Logger:
    """
    Get a logger configured for service operations.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Logger instance with the 'pharmacy_ledger.services' prefix.

    Example:
        >>> logger = get_service_logger(__name__)
        >>> logger.name
        'pharmacy_ledger.services.cascade_delete_service'
    """
    if "." in name:
        name = name.split(".")[-1]
    return logging.getLogger(f"pharmacy_ledger.services.{name}")


def log_operation(
    logger: logging.Logger,
    operation: str,
    outcome: str,
    level: int = logging.INFO,
    **context: Any,
) -> None:
    """
    Log a service operation with structured context.

    The context is passed via the 'extra' parameter, so every field becomes
    an attribute of the emitted LogRecord.

    Args:
        logger: Logger instance to use
        operation: Operation name (e.g., "update_purchase_item", "cleanup_expired_batches")
        outcome: Outcome description (e.g., "success", "conflict", "failed")
        level: Log level (default: INFO). Use DEBUG for per-row chatter.
        **context: Additional context fields
            Common fields:
            - purchase_item_id: Item being updated or deleted
            - purchase_id: Owning purchase
            - medicine_id: Medicine of the lot
            - rows: Rows affected by a store command
            - error: Error message if outcome is a failure
    """
    extra = {
        "operation": operation,
        "outcome": outcome,
        **context,
    }
    logger.log(level, f"{operation}: {outcome}", extra=extra)
