"""
Timestamp helpers for the sync engines.

Remote and local stores hand back timestamps in several shapes (ISO-8601
strings with a trailing "Z", datetimes with or without tzinfo, epoch
milliseconds). Everything is normalized to timezone-aware UTC datetimes.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> datetime | None:
    """
    Parse a timestamp into an aware datetime.

    Args:
        value: datetime, ISO-8601 string, or epoch milliseconds (int/float)

    Returns:
        Aware datetime, or None if the value is empty or cannot be parsed.
        Naive values are assumed to be UTC.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, bool):
        return None
    elif isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_epoch_ms(value: datetime | None) -> int | None:
    """Convert a datetime to integer epoch milliseconds (None passes through)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def format_datetime(value: datetime | None) -> str | None:
    """Render a datetime as an ISO-8601 UTC string with a "Z" suffix."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
