"""Datetime utilities for timezone-aware UTC timestamps and ISO dates.

Usage:
    from pharmacy_ledger.utils.datetime_utils import utc_now, parse_iso_date

    # For SQLAlchemy Column defaults
    created_at = Column(DateTime, default=utc_now)
"""

from datetime import date, datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def parse_iso_date(value: Optional[Union[str, date]]) -> Optional[date]:
    """
    Normalize an ISO ``YYYY-MM-DD`` string (or date) into a ``date``.

    Datetimes are truncated to their date part. ``None`` passes through.

    Raises:
        ValueError: If a string is not a valid ISO date
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def format_date(value: date) -> str:
    """Format a date as ``YYYY-MM-DD``."""
    return value.isoformat()
