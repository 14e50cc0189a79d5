"""
Retention Cleanup CLI

Command-line entry point for the yearly expired-batch purge.

Usage Examples:
    # Purge every pharmacy with the configured retention period
    pharmacy-ledger-cleanup

    # Only one pharmacy, keeping three years of expired batches
    pharmacy-ledger-cleanup --pharmacy-id 4 --retention-years 3

    # Show what would be deleted without touching the database
    pharmacy-ledger-cleanup --dry-run

    # Run against a specific database
    pharmacy-ledger-cleanup --database-url sqlite:///./ledger.db
"""

import argparse
import logging
import sys
import time
from typing import List, Optional

from ..services.database import configure_database, init_database
from ..services.retention_cleanup_service import (
    cleanup_expired_batches,
    preview_expired_batches,
)
from ..services.store import SqlStore
from .config import Config, get_config, set_config
from .constants import APP_NAME, APP_VERSION
from .datetime_utils import format_date


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pharmacy-ledger-cleanup",
        description="Delete medicine batches that expired before the retention cutoff.",
    )
    parser.add_argument(
        "--pharmacy-id",
        type=int,
        default=None,
        help="Only clean up purchases of this pharmacy (default: all pharmacies)",
    )
    parser.add_argument(
        "--retention-years",
        type=int,
        default=None,
        help="Years of expired batches to keep (default: configured value)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="List the batches that would be deleted, delete nothing",
    )
    parser.add_argument("--database-url", default=None, help="SQLAlchemy database URL")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"{APP_NAME} {APP_VERSION}")
    return parser


def print_preview(preview) -> None:
    print(f"Cutoff date: {format_date(preview.cutoff_date)}")
    print(f"Expired batches found: {len(preview.batches)}")
    for batch in preview.batches:
        print(
            f"  #{batch.purchase_item_id} {batch.medicine_name} "
            f"batch {batch.batch_number} expired {format_date(batch.expiry_date)}"
        )
    print("Would delete:")
    for table, count in preview.estimated.to_dict().items():
        print(f"  {table}: {count}")


def print_result(result) -> None:
    print(result.message)
    if result.cutoff_date is not None:
        print(f"Cutoff date: {format_date(result.cutoff_date)}")
    if not result.success:
        print(f"ERROR: {result.error}")
        return
    print(f"Batches processed: {result.batches_processed}")
    for table, count in result.stats.to_dict().items():
        print(f"  {table}: {count}")


def main(argv: Optional[List[str]] = None) -> int:
    """Run the cleanup; returns the process exit code."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        base = get_config()
        config = Config(
            environment=base.environment,
            database_url=args.database_url,
            retention_years=args.retention_years,
            dry_run=args.dry_run,
        )
    except ValueError as e:
        print(f"ERROR: {e}")
        return 1
    set_config(config)

    engine = configure_database(config.database_url)
    init_database(engine)

    store = SqlStore()
    started = time.monotonic()

    if config.dry_run:
        try:
            preview = preview_expired_batches(
                store,
                pharmacy_id=args.pharmacy_id,
                retention_years=config.retention_years,
            )
        except Exception as e:
            print(f"ERROR: {e}")
            return 1
        print_preview(preview)
        print(f"Completed in {time.monotonic() - started:.2f}s (dry run)")
        return 0

    result = cleanup_expired_batches(
        store,
        pharmacy_id=args.pharmacy_id,
        retention_years=config.retention_years,
    )
    print_result(result)
    print(f"Completed in {time.monotonic() - started:.2f}s")
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
