"""
Utility modules for exchange_sync.
"""

from exchange_sync.utils.logging import get_logger, setup_logging
from exchange_sync.utils.paths import resolve_config_dir
from exchange_sync.utils.timeutil import (
    format_datetime,
    parse_datetime,
    to_epoch_ms,
    utcnow,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "resolve_config_dir",
    "utcnow",
    "parse_datetime",
    "to_epoch_ms",
    "format_datetime",
]
