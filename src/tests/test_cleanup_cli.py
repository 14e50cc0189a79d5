"""Tests for the retention cleanup command-line entry point."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

import pharmacy_ledger.services.database as db_module
from pharmacy_ledger.services.store import SqlStore
from pharmacy_ledger.utils import cleanup_cli
from pharmacy_ledger.utils.config import ENV_DRY_RUN, ENV_RETENTION_YEARS, reset_config


@pytest.fixture
def database_url(tmp_path, monkeypatch):
    """A file database seeded with one expired and one fresh lot."""
    monkeypatch.setattr(db_module, "_engine", None)
    monkeypatch.setattr(db_module, "_SessionFactory", None)
    monkeypatch.delenv(ENV_DRY_RUN, raising=False)
    monkeypatch.delenv(ENV_RETENTION_YEARS, raising=False)
    reset_config()

    url = f"sqlite:///{tmp_path / 'ledger.db'}"
    db_module.init_database(db_module.configure_database(url))

    store = SqlStore()
    medicine_id = store.insert("medicines", {"name": "Amoxicillin 250mg"})["id"]
    purchase_id = store.insert(
        "purchases", {"invoice_number": "INV-9", "purchase_date": date(2019, 2, 1)}
    )["id"]
    this_year = date.today().year
    lots = [("OLD", date(this_year - 5, 3, 1)), ("NEW", date.today() + timedelta(days=365))]
    for batch_number, expiry_date in lots:
        store.insert(
            "purchase_items",
            {
                "purchase_id": purchase_id,
                "medicine_id": medicine_id,
                "batch_number": batch_number,
                "expiry_date": expiry_date,
                "quantity": 5,
                "purchase_rate": Decimal("2.00"),
            },
        )
        store.insert(
            "current_inventory",
            {"medicine_id": medicine_id, "batch_number": batch_number,
             "expiry_date": expiry_date, "current_stock": 5},
        )

    yield url

    db_module.get_engine().dispose()
    reset_config()


def _batches(url):
    db_module.configure_database(url)
    return sorted(row["batch_number"] for row in SqlStore().select("purchase_items"))


def test_cleanup_run(database_url, capsys):
    exit_code = cleanup_cli.main(["--database-url", database_url])

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "Cleanup completed successfully" in out
    assert "Batches processed: 1" in out
    assert f"Cutoff date: {date.today().year - 2}-01-01" in out
    assert _batches(database_url) == ["NEW"]


def test_dry_run_deletes_nothing(database_url, capsys):
    exit_code = cleanup_cli.main(["--database-url", database_url, "--dry-run"])

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "Expired batches found: 1" in out
    assert "Amoxicillin 250mg batch OLD" in out
    assert "current_inventory: 1" in out
    assert _batches(database_url) == ["NEW", "OLD"]


def test_dry_run_from_environment(database_url, monkeypatch, capsys):
    monkeypatch.setenv(ENV_DRY_RUN, "true")

    assert cleanup_cli.main(["--database-url", database_url]) == 0
    assert "(dry run)" in capsys.readouterr().out
    assert _batches(database_url) == ["NEW", "OLD"]


def test_long_retention_keeps_everything(database_url, capsys):
    exit_code = cleanup_cli.main(["--database-url", database_url, "--retention-years", "10"])

    assert exit_code == 0
    assert "No expired medicine batches found to delete" in capsys.readouterr().out
    assert _batches(database_url) == ["NEW", "OLD"]


def test_invalid_retention(database_url, capsys):
    exit_code = cleanup_cli.main(["--database-url", database_url, "--retention-years", "-1"])

    assert exit_code == 1
    assert "ERROR" in capsys.readouterr().out


def test_version_option(capsys):
    from pharmacy_ledger import __version__

    with pytest.raises(SystemExit) as exc_info:
        cleanup_cli.main(["--version"])

    assert exc_info.value.code == 0
    assert capsys.readouterr().out.strip() == f"Pharmacy Ledger {__version__}"
