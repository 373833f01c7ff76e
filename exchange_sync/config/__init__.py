"""
exchange_sync.config - Configuration management module

Contains configuration loading, validation, the accounts file, and default
settings.
"""

from exchange_sync.config.accounts import (
    load_accounts,
    load_store_factory,
    save_accounts,
)
from exchange_sync.config.generator import generate_default_config, save_config_file
from exchange_sync.config.loader import ConfigError, ConfigLoader, Settings

__all__ = [
    "ConfigError",
    "ConfigLoader",
    "Settings",
    "generate_default_config",
    "load_accounts",
    "load_store_factory",
    "save_accounts",
    "save_config_file",
]
