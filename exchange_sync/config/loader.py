"""
Configuration loader module for Exchange synchronization.

Provides YAML-based configuration file loading with support for:
- Loading configuration from the resolved config directory or a custom file
- Graceful handling of missing configuration files
- Validation of known keys, their types and ranges
- Typed accessors with defaults for the sync, auth and daemon settings
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from exchange_sync.api.errors import ExchangeSyncError
from exchange_sync.api.paginator import (
    CALENDAR_BATCH_SIZE,
    CONTACTS_BATCH_SIZE,
    DEFAULT_PAGE_DELAY,
    MAIL_BATCH_SIZE,
)
from exchange_sync.api.retry import DEFAULT_BASE_DELAY, DEFAULT_MAX_RETRIES
from exchange_sync.auth.tokens import DEFAULT_REFRESH_MARGIN, DEFAULT_TENANT
from exchange_sync.sync.account import EntityType
from exchange_sync.utils.paths import resolve_config_dir

# Default configuration file name
DEFAULT_CONFIG_FILE = "config.yaml"

# Defaults relative to the config directory
DEFAULT_DATABASE_FILE = "sync.db"
DEFAULT_ACCOUNTS_FILE = "accounts.yaml"
DEFAULT_PID_FILE = "daemon.pid"

DEFAULT_LOG_RETENTION_COUNT = 10

logger = logging.getLogger(__name__)

# Known configuration keys and their expected types
VALID_KEYS: dict[str, type[Any] | tuple[type[Any], ...]] = {
    # CLI options
    "verbose": bool,
    # API options
    "api_max_retries": int,
    "api_initial_retry_delay": (int, float),
    "page_delay": (int, float),
    "mail_batch_size": int,
    "contacts_batch_size": int,
    "calendar_batch_size": int,
    # Storage options
    "database_path": str,
    "accounts_file": str,
    "store_factory": str,
    # Logging options
    "log_dir": str,
    "log_retention_count": int,
    # Auth options
    "oauth_client_id": str,
    "oauth_tenant": str,
    "token_refresh_margin": int,
    # Daemon options
    "daemon_pid_file": str,
}

BATCH_SIZE_KEYS = {
    EntityType.EMAIL: "mail_batch_size",
    EntityType.CONTACTS: "contacts_batch_size",
    EntityType.CALENDAR: "calendar_batch_size",
}


class ConfigError(ExchangeSyncError):
    """Raised when configuration loading or validation fails."""

    pass


class ConfigLoader:
    """
    YAML configuration file loader.

    Attributes:
        config_dir: Directory containing the configuration file
        config_file: Name of the configuration file

    Usage:
        loader = ConfigLoader()
        config = loader.load_and_validate()

        # With custom path
        loader = ConfigLoader(config_dir=Path("/custom/path"))
        config = loader.load_from_file("/path/to/config.yaml")
    """

    def __init__(
        self,
        config_dir: Path | str | None = None,
        config_file: str = DEFAULT_CONFIG_FILE,
    ):
        self.config_dir = resolve_config_dir(config_dir)
        self.config_file = config_file

    @property
    def config_path(self) -> Path:
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        """
        Load configuration from the default configuration file.

        Returns an empty dict if the file doesn't exist.

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        return self.load_from_file(self.config_path)

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Load configuration from a specific file.

        Args:
            path: Path to the configuration file

        Returns:
            Dictionary containing configuration values, or empty dict if file
            doesn't exist

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        path = Path(path)

        if not path.exists():
            logger.debug(f"Configuration file not found: {path}")
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                config = yaml.safe_load(f)

            if config is None:
                logger.debug(f"Configuration file is empty: {path}")
                return {}

            if not isinstance(config, dict):
                raise ConfigError(
                    f"Configuration file must contain a YAML dictionary, "
                    f"got {type(config).__name__}"
                )

            logger.debug(f"Loaded configuration from {path}")
            return config

        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}") from e

    def validate(self, config: dict[str, Any]) -> None:
        """
        Validate configuration structure and values.

        Unknown keys are ignored with a debug message.

        Raises:
            ConfigError: If configuration is invalid
        """
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration must be a dictionary, got {type(config).__name__}"
            )

        for key, value in config.items():
            if key not in VALID_KEYS:
                logger.debug(f"Ignoring unknown configuration key '{key}'")
                continue
            expected_type = VALID_KEYS[key]
            # bool is an int subclass, but True is never a valid count or delay
            if isinstance(value, bool) and expected_type is not bool:
                valid = False
            else:
                valid = isinstance(value, expected_type)
            if not valid:
                if isinstance(expected_type, tuple):
                    type_name = " or ".join(t.__name__ for t in expected_type)
                else:
                    type_name = expected_type.__name__
                raise ConfigError(
                    f"Invalid type for '{key}': expected {type_name}, "
                    f"got {type(value).__name__}"
                )

        # Positive integer values
        positive_int_keys = [
            "mail_batch_size",
            "contacts_batch_size",
            "calendar_batch_size",
            "log_retention_count",
        ]
        for key in positive_int_keys:
            if key in config and config[key] < 1:
                raise ConfigError(f"{key} must be >= 1, got {config[key]}")

        # Zero is allowed: no retries, no refresh margin
        for key in ("api_max_retries", "token_refresh_margin"):
            if key in config and config[key] < 0:
                raise ConfigError(f"{key} must be >= 0, got {config[key]}")

        for key in ("api_initial_retry_delay", "page_delay"):
            if key in config and config[key] < 0:
                raise ConfigError(f"{key} must be >= 0, got {config[key]}")

        if "store_factory" in config and ":" not in config["store_factory"]:
            raise ConfigError(
                f"store_factory must look like 'module:callable', "
                f"got '{config['store_factory']}'"
            )

    def load_and_validate(self, path: Path | str | None = None) -> dict[str, Any]:
        """
        Load configuration and validate it.

        Args:
            path: Explicit config file; defaults to <config_dir>/config.yaml
        """
        config = self.load_from_file(path) if path is not None else self.load()
        if config:
            self.validate(config)
        return config


class Settings:
    """
    Typed view over a validated configuration dictionary.

    Relative paths are resolved against the config directory.

    Usage:
        settings = Settings(loader.load_and_validate(), loader.config_dir)
        db = SyncDatabase(settings.database_path)
    """

    def __init__(self, config: dict[str, Any], config_dir: Path):
        self.config = config
        self.config_dir = config_dir

    def _path(self, key: str, default: str) -> Path:
        path = Path(self.config.get(key, default)).expanduser()
        if not path.is_absolute():
            path = self.config_dir / path
        return path

    @property
    def verbose(self) -> bool:
        return bool(self.config.get("verbose", False))

    @property
    def max_retries(self) -> int:
        return self.config.get("api_max_retries", DEFAULT_MAX_RETRIES)

    @property
    def base_delay(self) -> float:
        return float(self.config.get("api_initial_retry_delay", DEFAULT_BASE_DELAY))

    @property
    def page_delay(self) -> float:
        return float(self.config.get("page_delay", DEFAULT_PAGE_DELAY))

    @property
    def batch_sizes(self) -> dict[EntityType, int]:
        defaults = {
            EntityType.EMAIL: MAIL_BATCH_SIZE,
            EntityType.CONTACTS: CONTACTS_BATCH_SIZE,
            EntityType.CALENDAR: CALENDAR_BATCH_SIZE,
        }
        return {
            entity_type: self.config.get(key, defaults[entity_type])
            for entity_type, key in BATCH_SIZE_KEYS.items()
        }

    @property
    def database_path(self) -> Path:
        return self._path("database_path", DEFAULT_DATABASE_FILE)

    @property
    def accounts_path(self) -> Path:
        return self._path("accounts_file", DEFAULT_ACCOUNTS_FILE)

    @property
    def pid_file(self) -> Path:
        return self._path("daemon_pid_file", DEFAULT_PID_FILE)

    @property
    def log_dir(self) -> Optional[Path]:
        if "log_dir" not in self.config:
            return None
        return self._path("log_dir", "logs")

    @property
    def log_retention_count(self) -> int:
        return self.config.get("log_retention_count", DEFAULT_LOG_RETENTION_COUNT)

    @property
    def oauth_client_id(self) -> Optional[str]:
        return self.config.get("oauth_client_id")

    @property
    def oauth_tenant(self) -> str:
        return self.config.get("oauth_tenant", DEFAULT_TENANT)

    @property
    def token_refresh_margin(self) -> int:
        return self.config.get("token_refresh_margin", DEFAULT_REFRESH_MARGIN)

    @property
    def store_factory(self) -> Optional[str]:
        return self.config.get("store_factory")
