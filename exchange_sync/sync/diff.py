"""
Field comparison between local and remote item shapes.

Each entity declares an ordered list of FieldPair(local, remote) names. A
missing value compares as "" so an absent field and an empty one are equal.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, NamedTuple

from exchange_sync.utils.timeutil import parse_datetime, to_epoch_ms


class FieldPair(NamedTuple):
    """Name of the same field on the local and on the remote side."""

    local: str
    remote: str


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def needs_update(
    local: Mapping[str, Any],
    remote: Mapping[str, Any],
    fields: Sequence[FieldPair],
) -> bool:
    """Return True on the first tracked field whose values differ."""
    for pair in fields:
        if _text(local.get(pair.local)) != _text(remote.get(pair.remote)):
            return True
    return False


def remote_needs_local_update(
    local: Mapping[str, Any],
    remote: Mapping[str, Any],
    fields: Sequence[FieldPair],
) -> bool:
    """
    Push-direction diff: should the remote item be updated from the local one?

    Same comparison as needs_update(), except a blank local field never
    counts as a difference. Local data never blanks a remote field.
    """
    for pair in fields:
        local_value = _text(local.get(pair.local))
        if not local_value.strip():
            continue
        if local_value != _text(remote.get(pair.remote)):
            return True
    return False


def instants_differ(local_value: Any, remote_value: Any, now: datetime) -> bool:
    """
    Compare two timestamps at millisecond resolution.

    Absent or unparseable values default to the same `now`, so two absent
    values are equal.
    """
    local_dt = parse_datetime(local_value) or now
    remote_dt = parse_datetime(remote_value) or now
    return to_epoch_ms(local_dt) != to_epoch_ms(remote_dt)


__all__ = [
    "FieldPair",
    "needs_update",
    "remote_needs_local_update",
    "instants_differ",
]
