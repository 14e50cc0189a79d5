"""Pytest configuration and fixtures for service layer tests."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from pharmacy_ledger.models.base import Base
from pharmacy_ledger.services.database import create_database_engine
from pharmacy_ledger.services.store import SqlStore
from pharmacy_ledger.services.exceptions import StoreError
from pharmacy_ledger.utils.config import reset_config
from pharmacy_ledger.utils.constants import TRANSACTION_TYPE_PURCHASE


@pytest.fixture(scope="function")
def test_db(monkeypatch):
    """Provide a clean test database for each test function.

    This fixture:
    1. Creates an in-memory SQLite database (foreign keys on, triggers installed)
    2. Creates all tables
    3. Points the global session factory at it
    4. Drops all tables after the test completes

    Yields the engine.
    """
    import pharmacy_ledger.models  # noqa: F401
    import pharmacy_ledger.services.database as db_module

    engine = create_database_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    monkeypatch.setattr(db_module, "get_session_factory", lambda: session_factory)
    reset_config()

    yield engine

    Base.metadata.drop_all(engine, checkfirst=True)
    engine.dispose()
    reset_config()


@pytest.fixture
def store(test_db):
    """Provide a SqlStore bound to the test database."""
    return SqlStore()


class FlakyStore:
    """Store wrapper that fails chosen (operation, table) commands.

    Example:
        flaky = FlakyStore(store, fail={("update", "current_inventory")})
    """

    def __init__(self, inner, fail=None, error=None):
        self.inner = inner
        self.fail = set(fail or ())
        self.error = error
        self.calls = []

    def _check(self, op, table):
        self.calls.append((op, table))
        if (op, table) in self.fail:
            raise self.error or StoreError(f"simulated {op} failure on {table}")

    def select(self, table, filters=None, columns=None, order_by=None, limit=None):
        self._check("select", table)
        return self.inner.select(table, filters, columns=columns, order_by=order_by, limit=limit)

    def insert(self, table, row):
        self._check("insert", table)
        return self.inner.insert(table, row)

    def update(self, table, filters, fields):
        self._check("update", table)
        return self.inner.update(table, filters, fields)

    def delete(self, table, filters):
        self._check("delete", table)
        return self.inner.delete(table, filters)


class LedgerBuilder:
    """Seeds pharmacies, medicines, purchases and lots through the store."""

    def __init__(self, store):
        self.store = store

    def pharmacy(self, name="Main Street Pharmacy"):
        return self.store.insert("pharmacies", {"name": name})["id"]

    def supplier(self, pharmacy_id, name="City Distributors"):
        return self.store.insert("suppliers", {"pharmacy_id": pharmacy_id, "name": name})["id"]

    def medicine(self, name="Paracetamol 500mg"):
        return self.store.insert(
            "medicines",
            {"name": name, "generic_name": name, "manufacturer": "Acme", "unit_type": "strips"},
        )["id"]

    def purchase(self, pharmacy_id=None, supplier_id=None, invoice_number="INV-1",
                 purchase_date=date(2023, 1, 10)):
        return self.store.insert(
            "purchases",
            {
                "pharmacy_id": pharmacy_id,
                "supplier_id": supplier_id,
                "invoice_number": invoice_number,
                "purchase_date": purchase_date,
                "total_amount": Decimal("0"),
            },
        )["id"]

    def lot(self, purchase_id, medicine_id, batch_number, expiry_date, quantity=10,
            purchase_rate=Decimal("5.00"), mrp=Decimal("8.00"), inventory=True,
            transactions=1):
        """Insert a purchase item plus its inventory snapshot and ledger rows."""
        item = self.store.insert(
            "purchase_items",
            {
                "purchase_id": purchase_id,
                "medicine_id": medicine_id,
                "batch_number": batch_number,
                "expiry_date": expiry_date,
                "quantity": quantity,
                "free_quantity": 0,
                "purchase_rate": purchase_rate,
                "mrp": mrp,
            },
        )
        key = {"medicine_id": medicine_id, "batch_number": batch_number, "expiry_date": expiry_date}
        if inventory:
            self.store.insert(
                "current_inventory",
                {**key, "current_stock": quantity, "last_purchase_rate": purchase_rate,
                 "current_mrp": mrp},
            )
        for _ in range(transactions):
            self.store.insert(
                "stock_transactions",
                {**key, "transaction_type": TRANSACTION_TYPE_PURCHASE, "quantity_in": quantity,
                 "rate": purchase_rate, "amount": Decimal(quantity) * purchase_rate},
            )
        return item["id"]

    def count(self, table, **filters):
        return len(self.store.select(table, filters or None, columns=["id"]))


@pytest.fixture
def ledger(store):
    """Provide a LedgerBuilder over the test store."""
    return LedgerBuilder(store)


@pytest.fixture
def flaky_store(store):
    """Factory wrapping the test store in a FlakyStore."""

    def make(fail=None, error=None):
        return FlakyStore(store, fail=fail, error=error)

    return make
