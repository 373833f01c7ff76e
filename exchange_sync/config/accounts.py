"""
Accounts file and store backend loading.

accounts.yaml holds a top-level "accounts" list; each entry is parsed with
Account.from_dict. Basic-auth passwords are never stored in the file: an
entry names an environment variable with server.password_env instead.
"""

from __future__ import annotations

import importlib
import logging
import os
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any, Optional

import yaml

from exchange_sync.api.stores import LocalStore, RemoteStore
from exchange_sync.config.loader import ConfigError
from exchange_sync.stores.memory import create_memory_stores
from exchange_sync.sync.account import AUTH_METHOD_BASIC, Account

logger = logging.getLogger(__name__)

StoreFactory = Callable[[], tuple[RemoteStore, LocalStore]]


def load_accounts(path: Path | str) -> list[Account]:
    """
    Load accounts from a YAML accounts file.

    Returns an empty list if the file doesn't exist.

    Raises:
        ConfigError: If the file cannot be parsed, has the wrong shape,
            contains an invalid entry, or repeats an account id
    """
    path = Path(path)
    if not path.exists():
        logger.debug(f"Accounts file not found: {path}")
        return []

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse accounts file: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read accounts file: {e}") from e

    entries = data.get("accounts") if isinstance(data, dict) else None
    if entries is None:
        entries = []
    if not isinstance(entries, list):
        raise ConfigError("accounts file must contain an 'accounts' list")

    accounts: list[Account] = []
    seen: set[str] = set()
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ConfigError(f"accounts[{index}] must be a mapping")
        try:
            account = Account.from_dict(entry)
        except ValueError as e:
            raise ConfigError(f"accounts[{index}]: {e}") from e
        if account.id in seen:
            raise ConfigError(f"Duplicate account id '{account.id}'")
        seen.add(account.id)
        _apply_password_env(account, entry)
        accounts.append(account)

    logger.debug(f"Loaded {len(accounts)} account(s) from {path}")
    return accounts


def _apply_password_env(account: Account, entry: dict[str, Any]) -> None:
    if account.server.auth_method != AUTH_METHOD_BASIC:
        return
    env_var = (entry.get("server") or {}).get("password_env")
    if not env_var:
        return
    password = os.environ.get(env_var)
    if password:
        account.credentials.password = password
    else:
        logger.warning(
            f"Environment variable {env_var} for account {account.id} is not set"
        )


def save_accounts(
    path: Path | str,
    accounts: Iterable[Account],
    password_envs: Optional[dict[str, str]] = None,
) -> None:
    """
    Write accounts back to the accounts file, preserving password_env names.

    Args:
        path: accounts.yaml path
        accounts: Accounts to write
        password_envs: account id -> password_env to keep in server settings
    """
    path = Path(path)
    entries = []
    for account in accounts:
        entry = account.to_dict()
        if password_envs and account.id in password_envs:
            entry["server"]["password_env"] = password_envs[account.id]
        entries.append(entry)

    path.parent.mkdir(parents=True, mode=0o700, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        yaml.safe_dump({"accounts": entries}, f, sort_keys=False)
    tmp_path.replace(path)
    logger.debug(f"Saved {len(entries)} account(s) to {path}")


def read_password_envs(path: Path | str) -> dict[str, str]:
    """account id -> server.password_env for entries that declare one."""
    path = Path(path)
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    result: dict[str, str] = {}
    for entry in data.get("accounts") or []:
        if not isinstance(entry, dict):
            continue
        env_var = (entry.get("server") or {}).get("password_env")
        if entry.get("id") and env_var:
            result[str(entry["id"])] = env_var
    return result


def load_store_factory(target: Optional[str]) -> StoreFactory:
    """
    Resolve a "module:callable" store factory.

    With no target the in-memory backend is returned.

    Raises:
        ConfigError: If the module or attribute cannot be loaded
    """
    if not target:
        return create_memory_stores

    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise ConfigError(f"Invalid store_factory '{target}'")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import store_factory module '{module_name}'") from e
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigError(f"store_factory '{target}' is not callable")
    return factory
