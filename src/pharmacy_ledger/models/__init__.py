"""
Database models package.

This package contains all SQLAlchemy ORM models for the application.
"""

from .base import Base, BaseModel
from .pharmacy import Pharmacy, Supplier
from .medicine import Medicine
from .purchase import Purchase, PurchaseItem
from .inventory import InventoryRecord, StockTransaction

__all__ = [
    "Base",
    "BaseModel",
    "Pharmacy",
    "Supplier",
    "Medicine",
    "Purchase",
    "PurchaseItem",
    "InventoryRecord",
    "StockTransaction",
]
