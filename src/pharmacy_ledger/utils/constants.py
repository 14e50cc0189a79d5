"""
Constants for the Pharmacy Ledger application.

This module defines system-wide constants including:
- Application metadata
- Store table names
- Retention cleanup defaults
- Placeholder values for auto-created catalog entries
"""

from typing import List

# ============================================================================
# Application Metadata
# ============================================================================

APP_NAME = "Pharmacy Ledger"
APP_VERSION = "0.1.0"
DATABASE_FILENAME = "pharmacy_ledger.db"

# ============================================================================
# Store Tables
# ============================================================================

PHARMACIES_TABLE = "pharmacies"
MEDICINES_TABLE = "medicines"
PURCHASES_TABLE = "purchases"
PURCHASE_ITEMS_TABLE = "purchase_items"
CURRENT_INVENTORY_TABLE = "current_inventory"
STOCK_TRANSACTIONS_TABLE = "stock_transactions"

# Tables holding a medicine_id reference, checked before a medicine is reclaimed
MEDICINE_REFERENCE_TABLES: List[str] = [
    PURCHASE_ITEMS_TABLE,
    CURRENT_INVENTORY_TABLE,
    STOCK_TRANSACTIONS_TABLE,
]

# ============================================================================
# Retention Cleanup
# ============================================================================

# Years of expired lots kept before the yearly purge removes them
DEFAULT_RETENTION_YEARS = 2

# Largest id list sent in one IN (...) filter; stays under SQLite's bound parameter cap
IN_CLAUSE_CHUNK_SIZE = 500

# ============================================================================
# Medicine Placeholders
# ============================================================================

# Used when a purchase item edit names a medicine missing from the catalog
PLACEHOLDER_MANUFACTURER = "Unknown"
PLACEHOLDER_UNIT_TYPE = "strips"

UNKNOWN_MEDICINE_NAME = "Unknown"

# ============================================================================
# Stock Transaction Types
# ============================================================================

TRANSACTION_TYPE_PURCHASE = "PURCHASE"
TRANSACTION_TYPE_SALE = "SALE"
TRANSACTION_TYPE_ADJUSTMENT = "ADJUSTMENT"

TRANSACTION_TYPES: List[str] = [
    TRANSACTION_TYPE_PURCHASE,
    TRANSACTION_TYPE_SALE,
    TRANSACTION_TYPE_ADJUSTMENT,
]
