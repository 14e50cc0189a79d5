"""
Configuration management for the Pharmacy Ledger application.

This module handles:
- Database URL configuration
- Retention cleanup settings (retention period, dry-run flag)
- Environment-specific configuration (development vs. production)
"""

import os
from pathlib import Path
from typing import Optional

from .constants import (
    DATABASE_FILENAME,
    DEFAULT_RETENTION_YEARS,
)

ENV_ENVIRONMENT = "PHARMACY_LEDGER_ENV"
ENV_DATABASE_URL = "PHARMACY_LEDGER_DATABASE_URL"
ENV_RETENTION_YEARS = "PHARMACY_LEDGER_RETENTION_YEARS"
ENV_DRY_RUN = "PHARMACY_LEDGER_DRY_RUN"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _parse_retention_years(raw: Optional[str]) -> int:
    """
    Parse the retention period setting.

    Args:
        raw: Raw environment value, or None when unset

    Returns:
        Retention period in whole years

    Raises:
        ValueError: If the value is not a non-negative integer
    """
    if raw is None or raw.strip() == "":
        return DEFAULT_RETENTION_YEARS
    try:
        years = int(raw.strip())
    except ValueError:
        raise ValueError(f"{ENV_RETENTION_YEARS} must be an integer, got '{raw}'")
    if years < 0:
        raise ValueError(f"{ENV_RETENTION_YEARS} cannot be negative, got {years}")
    return years


def _parse_bool(name: str, raw: Optional[str]) -> bool:
    """Parse a boolean environment flag."""
    if raw is None:
        return False
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be true or false, got '{raw}'")


class Config:
    """
    Application configuration manager.

    Handles the database location and the retention cleanup settings.
    Values are read from the environment once, when the instance is created.
    """

    def __init__(
        self,
        environment: str = "production",
        database_url: Optional[str] = None,
        retention_years: Optional[int] = None,
        dry_run: Optional[bool] = None,
    ):
        """
        Initialize configuration.

        Args:
            environment: Environment mode - 'production' or 'development'
            database_url: Optional explicit database URL (overrides environment)
            retention_years: Optional explicit retention period (overrides environment)
            dry_run: Optional explicit dry-run flag (overrides environment)
        """
        self.environment = environment
        if environment == "development":
            self._base_dir = self._get_project_data_dir()
        else:
            self._base_dir = Path.home() / ".pharmacy_ledger"

        self._database_path = self._base_dir / DATABASE_FILENAME
        self._database_url = database_url or os.environ.get(ENV_DATABASE_URL)

        if retention_years is None:
            retention_years = _parse_retention_years(os.environ.get(ENV_RETENTION_YEARS))
        elif retention_years < 0:
            raise ValueError(f"retention_years cannot be negative, got {retention_years}")
        self._retention_years = retention_years

        if dry_run is None:
            dry_run = _parse_bool(ENV_DRY_RUN, os.environ.get(ENV_DRY_RUN))
        self._dry_run = dry_run

    def _get_project_data_dir(self) -> Path:
        """
        Get the project's data directory for development.

        Returns:
            Path to project data/ directory
        """
        project_root = Path(__file__).parent.parent.parent.parent
        return project_root / "data"

    @property
    def database_path(self) -> Path:
        """Full path to the default SQLite database file."""
        return self._database_path

    @property
    def database_url(self) -> str:
        """
        SQLAlchemy database URL.

        Returns:
            The configured URL, or a SQLite URL for the default database file
        """
        if self._database_url:
            return self._database_url
        self._database_path.parent.mkdir(parents=True, exist_ok=True)
        db_path_str = str(self._database_path).replace("\\", "/")
        return f"sqlite:///{db_path_str}"

    @property
    def retention_years(self) -> int:
        """Years of expired lots kept before the retention cleanup purges them."""
        return self._retention_years

    @property
    def dry_run(self) -> bool:
        """True when cleanup runs should only preview deletions."""
        return self._dry_run

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    def __repr__(self) -> str:
        """String representation of config."""
        return (
            f"Config(environment='{self.environment}', "
            f"retention_years={self._retention_years}, dry_run={self._dry_run})"
        )


_config_instance: Optional[Config] = None


def get_config(environment: Optional[str] = None) -> Config:
    """
    Get the global configuration instance.

    Once created, the singleton's environment cannot be changed by passing
    a different environment argument.

    Args:
        environment: Optional environment for initial creation. If None, uses
                    PHARMACY_LEDGER_ENV or defaults to production. Ignored if
                    singleton already exists.

    Returns:
        Config instance
    """
    global _config_instance

    if _config_instance is None:
        if environment is None:
            environment = os.environ.get(ENV_ENVIRONMENT, "production")
        _config_instance = Config(environment)
    elif environment is not None and environment != _config_instance.environment:
        import logging

        logger = logging.getLogger(__name__)
        logger.warning(
            f"get_config() called with environment='{environment}' but singleton "
            f"already exists with environment='{_config_instance.environment}'. "
            f"Returning existing singleton."
        )

    return _config_instance


def set_config(config: Config) -> Config:
    """
    Replace the global configuration instance.

    Used by the cleanup command to apply command-line overrides.
    """
    global _config_instance
    _config_instance = config
    return config


def reset_config():
    """
    Reset the global configuration instance.

    Useful for testing.
    """
    global _config_instance
    _config_instance = None
