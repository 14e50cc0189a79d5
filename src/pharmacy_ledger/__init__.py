"""Pharmacy Ledger - purchase, stock and retention consistency engine."""

__version__ = "0.1.0"
