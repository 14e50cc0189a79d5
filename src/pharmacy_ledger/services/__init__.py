"""
Service layer for Pharmacy Ledger.

Services are plain functions that take the store as their first argument;
no service keeps state between calls.
"""
