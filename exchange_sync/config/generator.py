"""
Configuration file generator for Exchange synchronization.

Generates the documented default config.yaml written by `init-config`.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def generate_default_config() -> str:
    """
    Generate default YAML configuration with all options documented.

    Every option is commented out so the built-in defaults apply until the
    user opts in.
    """
    return """# Exchange Sync Configuration
# ===========================
#
# Default options for exchange-sync. CLI arguments override these values.
# Relative paths are resolved against the configuration directory
# (~/.exchange-sync or $EXCHANGE_SYNC_CONFIG_DIR).

# Logging Options
# ---------------

# Enable verbose (DEBUG) console output
# Default: false
# verbose: false

# Directory for dated log files
# Default: ~/.exchange-sync/logs
# log_dir: logs

# Number of log files to keep
# Default: 10
# log_retention_count: 10


# Exchange API Options
# --------------------

# Retries per remote call after the first attempt
# Delays grow as api_initial_retry_delay * 2^n seconds
# Default: 3
# api_max_retries: 3

# Default: 1.0
# api_initial_retry_delay: 1.0

# Pause between remote pages in seconds
# Default: 0.1
# page_delay: 0.1

# Page sizes per entity type
# mail_batch_size: 50
# contacts_batch_size: 100
# calendar_batch_size: 50


# Authentication
# --------------

# Azure AD application (client) id used to refresh OAuth2 tokens
# oauth_client_id: 00000000-0000-0000-0000-000000000000

# Directory tenant, "common" for multi-tenant applications
# Default: common
# oauth_tenant: common

# Refresh access tokens this many seconds before they expire
# Default: 300
# token_refresh_margin: 300


# Storage
# -------

# SQLite database holding per-account sync state
# Default: sync.db
# database_path: sync.db

# Accounts file
# Default: accounts.yaml
# accounts_file: accounts.yaml

# Store backend as "module:callable" returning (remote_store, local_store)
# Default: the in-memory backend (dry run)
# store_factory: mypackage.backends:create_stores


# Daemon
# ------

# Default: daemon.pid
# daemon_pid_file: daemon.pid
"""


def generate_default_accounts() -> str:
    """Example accounts.yaml written next to a new config file."""
    return """# Exchange Sync Accounts
# ======================
#
# accounts:
#   - id: work
#     email: me@example.com
#     display_name: Work
#     server:
#       ews_url: https://outlook.office365.com/EWS/Exchange.asmx
#       auth_method: oauth2
#     sync_settings:
#       email: true
#       contacts: true
#       calendar: true
#       sync_interval: 300
#
#   - id: legacy
#     email: me@legacy.example.com
#     server:
#       ews_url: https://mail.legacy.example.com/EWS/Exchange.asmx
#       auth_method: basic
#       username: me
#       password_env: LEGACY_EXCHANGE_PASSWORD
accounts: []
"""


def save_config_file(
    config_path: Path, overwrite: bool = False
) -> tuple[bool, str | None]:
    """
    Save default configuration file to specified path.

    Creates parent directories if they don't exist and saves
    the configuration with secure permissions.

    Args:
        config_path: Path where the config file should be saved
        overwrite: If True, overwrite existing file. If False, fail if file exists.

    Returns:
        Tuple of (success, error_message)
    """
    return _write_template(config_path, generate_default_config(), overwrite)


def save_accounts_template(
    accounts_path: Path, overwrite: bool = False
) -> tuple[bool, str | None]:
    """Write the example accounts file; same contract as save_config_file()."""
    return _write_template(accounts_path, generate_default_accounts(), overwrite)


def _write_template(
    path: Path, content: str, overwrite: bool
) -> tuple[bool, str | None]:
    try:
        path = path.expanduser().resolve()

        if path.exists() and not overwrite:
            return (
                False,
                f"File already exists: {path}\nUse --force to overwrite.",
            )

        path.parent.mkdir(parents=True, mode=0o700, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        path.chmod(0o600)

        logger.info(f"Created {path}")
        return (True, None)

    except OSError as e:
        error_msg = f"Failed to create {path}: {e}"
        logger.error(error_msg)
        return (False, error_msg)
