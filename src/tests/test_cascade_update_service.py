"""Tests for the Cascade Update Service.

Covers payload parsing, lot key conflict detection, propagation to the
inventory snapshot and the stock ledger, purchase total recalculation and
best-effort behaviour when a propagation step fails.
"""

from datetime import date
from decimal import Decimal

import pytest

from pharmacy_ledger.services.cascade_update_service import (
    PurchaseItemChanges,
    get_purchase_item,
    parse_free_quantity,
    update_purchase_item,
)
from pharmacy_ledger.services.exceptions import (
    LotKeyConflict,
    PurchaseItemNotFound,
    ValidationError,
)

EXPIRY = date(2026, 6, 30)


@pytest.fixture
def seeded(ledger):
    """One purchase with two lots of the same medicine."""
    medicine_id = ledger.medicine("Paracetamol 500mg")
    purchase_id = ledger.purchase()
    first = ledger.lot(purchase_id, medicine_id, "B1", EXPIRY, quantity=10, purchase_rate=Decimal("5"))
    second = ledger.lot(purchase_id, medicine_id, "B2", EXPIRY, quantity=4, purchase_rate=Decimal("3"))
    return {
        "medicine_id": medicine_id,
        "purchase_id": purchase_id,
        "first": first,
        "second": second,
    }


class TestParseFreeQuantity:
    @pytest.mark.parametrize(
        "value,expected",
        [(None, 0), (5, 5), (3.7, 3), ("2 strips", 2), ("none", 0), ("", 0), (Decimal("4.9"), 4)],
    )
    def test_parse(self, value, expected):
        assert parse_free_quantity(value) == expected


class TestPurchaseItemChanges:
    def test_from_payload_parses_strings(self):
        changes = PurchaseItemChanges.from_payload(
            {
                "quantity": "12",
                "purchase_rate": "7.25",
                "mrp": "",
                "expiry_date": "2027-01-31",
                "batch_number": "B9",
                "Free": "2 strips",
            }
        )

        assert changes.quantity == 12
        assert changes.purchase_rate == Decimal("7.25")
        assert changes.mrp is None
        assert changes.expiry_date == date(2027, 1, 31)
        assert changes.batch_number == "B9"
        assert changes.free_quantity == 2

    def test_from_payload_collects_errors(self):
        with pytest.raises(ValidationError) as exc_info:
            PurchaseItemChanges.from_payload(
                {"quantity": "lots", "purchase_rate": "abc", "expiry_date": "31/01/2027"}
            )
        assert len(exc_info.value.errors) == 3
        assert exc_info.value.status_code == 400

    def test_negative_values_rejected(self):
        with pytest.raises(ValidationError, match="quantity cannot be negative"):
            PurchaseItemChanges(quantity=-1)
        with pytest.raises(ValidationError):
            PurchaseItemChanges.from_payload({"mrp": "-3"})

    def test_flags(self):
        assert PurchaseItemChanges().is_empty
        assert not PurchaseItemChanges(medicine_name="X").is_empty
        assert PurchaseItemChanges(mrp=Decimal("1")).changes_amounts
        assert not PurchaseItemChanges(batch_number="B").changes_amounts
        assert PurchaseItemChanges(quantity=3, medicine_name="X").item_fields() == {"quantity": 3}


class TestUpdatePurchaseItem:
    def test_missing_item(self, store):
        with pytest.raises(PurchaseItemNotFound):
            update_purchase_item(store, 999, PurchaseItemChanges(quantity=1))

    def test_empty_changes_return_item(self, store, seeded):
        item = update_purchase_item(store, seeded["first"], PurchaseItemChanges())

        assert item["quantity"] == 10
        assert item["medicine_name"] == "Paracetamol 500mg"

    def test_quantity_change_propagates(self, store, ledger, seeded):
        item = update_purchase_item(store, seeded["first"], PurchaseItemChanges(quantity=20))

        assert item["quantity"] == 20
        assert item["net_amount"] == Decimal("100.00")

        inventory = store.select("current_inventory", {"batch_number": "B1"})[0]
        assert inventory["current_stock"] == 20

        transaction = store.select("stock_transactions", {"batch_number": "B1"})[0]
        assert transaction["quantity_in"] == 20
        assert transaction["amount"] == Decimal("100.00")

        purchase = store.select("purchases", {"id": seeded["purchase_id"]})[0]
        assert purchase["total_amount"] == Decimal("112.00")

        # the other lot is untouched
        other = store.select("current_inventory", {"batch_number": "B2"})[0]
        assert other["current_stock"] == 4

    def test_rate_change_recomputes_ledger_amount(self, store, seeded):
        update_purchase_item(store, seeded["first"], PurchaseItemChanges(purchase_rate=Decimal("6")))

        transaction = store.select("stock_transactions", {"batch_number": "B1"})[0]
        assert transaction["rate"] == Decimal("6.00")
        assert transaction["amount"] == Decimal("60.00")
        inventory = store.select("current_inventory", {"batch_number": "B1"})[0]
        assert inventory["last_purchase_rate"] == Decimal("6.00")

    def test_lot_key_change_moves_dependents(self, store, seeded):
        new_expiry = date(2027, 1, 31)

        update_purchase_item(
            store,
            seeded["first"],
            PurchaseItemChanges(batch_number="B1-NEW", expiry_date=new_expiry),
        )

        assert store.select("current_inventory", {"batch_number": "B1"}) == []
        moved = store.select("current_inventory", {"batch_number": "B1-NEW"})
        assert len(moved) == 1
        assert moved[0]["expiry_date"] == new_expiry
        ledger_rows = store.select("stock_transactions", {"batch_number": "B1-NEW"})
        assert [row["expiry_date"] for row in ledger_rows] == [new_expiry]

    def test_conflicting_lot_key_rejected(self, store, seeded):
        with pytest.raises(LotKeyConflict) as exc_info:
            update_purchase_item(store, seeded["second"], PurchaseItemChanges(batch_number="B1"))

        assert exc_info.value.conflicting_item_id == seeded["first"]
        assert exc_info.value.status_code == 409
        assert exc_info.value.code == "DUPLICATE_ENTRY"
        # nothing written
        item = get_purchase_item(store, seeded["second"])
        assert item["batch_number"] == "B2"
        assert store.select("current_inventory", {"batch_number": "B2"})

    def test_medicine_change_into_existing_lot_rejected(self, store, ledger):
        expiry = date(2025, 1, 1)
        medicine_x = ledger.medicine("Medicine X")
        medicine_y = ledger.medicine("Medicine Y")
        purchase_id = ledger.purchase()
        item_d = ledger.lot(purchase_id, medicine_x, "B1", expiry, quantity=10)
        holder = ledger.lot(purchase_id, medicine_y, "B1", expiry, quantity=6)

        with pytest.raises(LotKeyConflict) as exc_info:
            update_purchase_item(
                store, item_d, PurchaseItemChanges(medicine_name="Medicine Y", quantity=3)
            )

        assert exc_info.value.conflicting_item_id == holder
        assert exc_info.value.lot_key == (medicine_y, "B1", expiry)

        item = get_purchase_item(store, item_d)
        assert item["medicine_id"] == medicine_x
        assert item["quantity"] == 10

        inventory = store.select("current_inventory", {"medicine_id": medicine_x})
        assert [(row["batch_number"], row["current_stock"]) for row in inventory] == [("B1", 10)]
        transactions = store.select("stock_transactions", {"medicine_id": medicine_x})
        assert [row["quantity_in"] for row in transactions] == [10]
        assert ledger.count("current_inventory", medicine_id=medicine_y) == 1
        assert ledger.count("medicines") == 2

    def test_same_key_is_not_a_conflict(self, store, seeded):
        item = update_purchase_item(
            store, seeded["first"], PurchaseItemChanges(batch_number="B1", quantity=11)
        )
        assert item["quantity"] == 11

    def test_medicine_rename_reclaims_old_medicine(self, store, ledger):
        old_medicine = ledger.medicine("Paracetamol 500mg")
        purchase_id = ledger.purchase()
        item_id = ledger.lot(purchase_id, old_medicine, "B1", EXPIRY)

        item = update_purchase_item(
            store, item_id, PurchaseItemChanges(medicine_name="Paracetamol 650mg")
        )

        assert item["medicine_name"] == "Paracetamol 650mg"
        assert item["medicine_id"] != old_medicine
        assert store.select("current_inventory")[0]["medicine_id"] == item["medicine_id"]
        assert store.select("stock_transactions")[0]["medicine_id"] == item["medicine_id"]
        assert ledger.count("medicines", id=old_medicine) == 0

    def test_medicine_rename_keeps_shared_medicine(self, store, seeded, ledger):
        update_purchase_item(store, seeded["first"], PurchaseItemChanges(medicine_name="Other"))

        assert ledger.count("medicines", id=seeded["medicine_id"]) == 1

    def test_failed_propagation_is_best_effort(self, store, seeded, flaky_store):
        flaky = flaky_store(fail={("update", "current_inventory")})

        item = update_purchase_item(flaky, seeded["first"], PurchaseItemChanges(quantity=15))

        assert item["quantity"] == 15
        # inventory step failed, later steps still ran
        assert store.select("current_inventory", {"batch_number": "B1"})[0]["current_stock"] == 10
        assert store.select("stock_transactions", {"batch_number": "B1"})[0]["quantity_in"] == 15
        purchase = store.select("purchases", {"id": seeded["purchase_id"]})[0]
        assert purchase["total_amount"] == Decimal("87.00")

    def test_failed_propagation_is_logged(self, store, seeded, flaky_store, caplog):
        flaky = flaky_store(fail={("update", "stock_transactions")})

        with caplog.at_level("WARNING", logger="pharmacy_ledger.services"):
            update_purchase_item(flaky, seeded["first"], PurchaseItemChanges(quantity=15))

        failures = [r for r in caplog.records if getattr(r, "outcome", None) == "failed"]
        assert [r.operation for r in failures] == ["propagate_stock_transactions"]

    def test_rerun_converges(self, store, seeded):
        changes = PurchaseItemChanges(quantity=9, purchase_rate=Decimal("4"))

        update_purchase_item(store, seeded["first"], changes)
        item = update_purchase_item(store, seeded["first"], changes)

        assert item["net_amount"] == Decimal("36.00")
        assert store.select("purchases", {"id": seeded["purchase_id"]})[0]["total_amount"] == Decimal("48.00")
