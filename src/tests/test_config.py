"""Unit tests for Config and the retention cleanup settings.

Each setting is tested for:
- Default values when no environment variables set
- Environment variable overrides
- Explicit constructor overrides
- Invalid value handling
"""

import pytest

from pharmacy_ledger.utils.config import (
    ENV_DATABASE_URL,
    ENV_DRY_RUN,
    ENV_ENVIRONMENT,
    ENV_RETENTION_YEARS,
    Config,
    get_config,
    reset_config,
    set_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (ENV_DATABASE_URL, ENV_DRY_RUN, ENV_ENVIRONMENT, ENV_RETENTION_YEARS):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


class TestRetentionSettings:
    def test_retention_default(self):
        assert Config().retention_years == 2

    def test_retention_env_override(self, monkeypatch):
        monkeypatch.setenv(ENV_RETENTION_YEARS, "4")
        assert Config().retention_years == 4

    def test_retention_explicit_wins(self, monkeypatch):
        monkeypatch.setenv(ENV_RETENTION_YEARS, "4")
        assert Config(retention_years=1).retention_years == 1

    @pytest.mark.parametrize("raw", ["two", "-1", "1.5"])
    def test_retention_invalid(self, monkeypatch, raw):
        monkeypatch.setenv(ENV_RETENTION_YEARS, raw)
        with pytest.raises(ValueError, match=ENV_RETENTION_YEARS):
            Config()

    def test_retention_explicit_negative(self):
        with pytest.raises(ValueError):
            Config(retention_years=-2)

    def test_dry_run(self, monkeypatch):
        assert Config().dry_run is False
        monkeypatch.setenv(ENV_DRY_RUN, "yes")
        assert Config().dry_run is True
        assert Config(dry_run=False).dry_run is False

    def test_dry_run_invalid(self, monkeypatch):
        monkeypatch.setenv(ENV_DRY_RUN, "maybe")
        with pytest.raises(ValueError, match=ENV_DRY_RUN):
            Config()


class TestDatabaseSettings:
    def test_explicit_url(self):
        assert Config(database_url="sqlite:///:memory:").database_url == "sqlite:///:memory:"

    def test_env_url(self, monkeypatch):
        monkeypatch.setenv(ENV_DATABASE_URL, "sqlite:///tmp/ledger.db")
        assert Config().database_url == "sqlite:///tmp/ledger.db"

    def test_default_file_location(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        config = Config()
        assert config.database_path.name == "pharmacy_ledger.db"
        assert config.database_url.startswith("sqlite:///")
        assert config.database_path.parent.exists()

    def test_environment_flags(self):
        assert Config().is_production
        assert Config("development").is_development
        assert "retention_years=2" in repr(Config())


class TestSingleton:
    def test_get_config_reads_environment(self, monkeypatch):
        monkeypatch.setenv(ENV_ENVIRONMENT, "development")
        assert get_config().is_development
        assert get_config() is get_config()

    def test_set_config_replaces_instance(self):
        custom = Config(retention_years=7)
        set_config(custom)
        assert get_config() is custom
        assert get_config("development").retention_years == 7
