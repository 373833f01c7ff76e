"""CLI package for exchange_sync."""

from exchange_sync.cli.main import build_runtime, cli, get_config_dir

__all__ = ["build_runtime", "cli", "get_config_dir"]
