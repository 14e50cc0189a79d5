"""Utility modules for Pharmacy Ledger."""
