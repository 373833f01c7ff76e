"""
Calendar event models for Exchange calendar synchronization.

Provides:
- LocalEvent / RemoteEvent native shapes
- SyncWindow, the date range a calendar sync is restricted to
- The free/busy status lookup table
- Matching keys (subject + start time in epoch milliseconds)
- Field and instant comparison, and conversion in both directions
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from exchange_sync.sync.diff import (
    FieldPair,
    instants_differ,
    needs_update,
    remote_needs_local_update,
)
from exchange_sync.utils.timeutil import (
    format_datetime,
    parse_datetime,
    to_epoch_ms,
    utcnow,
)

# Remote container id for the mailbox's default calendar
REMOTE_CALENDAR_FOLDER = "calendar"

FULL_SYNC_PAST = timedelta(days=30)
FULL_SYNC_FUTURE = timedelta(days=60)
INCREMENTAL_OVERLAP = timedelta(hours=1)
INCREMENTAL_FUTURE = timedelta(days=30)

# Exchange FreeBusy status -> local status
FREE_BUSY_TO_STATUS = {
    "Free": "available",
    "Tentative": "tentative",
    "Busy": "busy",
    "OOF": "out-of-office",
    "WorkingElsewhere": "working-elsewhere",
}
STATUS_TO_FREE_BUSY = {local: remote for remote, local in FREE_BUSY_TO_STATUS.items()}

DEFAULT_STATUS = "busy"
DEFAULT_FREE_BUSY = "Busy"

# Tracked text fields: (local, remote). Start and end are compared separately.
EVENT_FIELDS = (
    FieldPair("title", "subject"),
    FieldPair("description", "body"),
    FieldPair("location", "location"),
)


@dataclass(frozen=True)
class SyncWindow:
    """Half-open [start, end) range of event start times to reconcile."""

    start: datetime
    end: datetime

    @classmethod
    def full(cls, now: Optional[datetime] = None) -> "SyncWindow":
        now = now or utcnow()
        return cls(now - FULL_SYNC_PAST, now + FULL_SYNC_FUTURE)

    @classmethod
    def incremental(
        cls, last_sync: datetime, now: Optional[datetime] = None
    ) -> "SyncWindow":
        now = now or utcnow()
        return cls(last_sync - INCREMENTAL_OVERLAP, now + INCREMENTAL_FUTURE)

    def contains(self, value: Optional[datetime]) -> bool:
        if value is None:
            return False
        return self.start <= value < self.end

    def as_tuple(self) -> tuple[datetime, datetime]:
        return (self.start, self.end)


def status_from_free_busy(free_busy: Optional[str]) -> str:
    """Map an Exchange FreeBusy value to a local status; unknown maps to busy."""
    return FREE_BUSY_TO_STATUS.get(free_busy or "", DEFAULT_STATUS)


def free_busy_from_status(status: Optional[str]) -> str:
    """Map a local status to an Exchange FreeBusy value; unknown maps to Busy."""
    return STATUS_TO_FREE_BUSY.get(status or "", DEFAULT_FREE_BUSY)


@dataclass
class LocalEvent:
    """Event in a local calendar."""

    id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    location: Optional[str] = None
    status: Optional[str] = None
    organizer: Optional[dict[str, str]] = None
    attendees: list[dict[str, str]] = field(default_factory=list)
    exchange_id: Optional[str] = None

    @classmethod
    def from_native(cls, data: dict[str, Any]) -> "LocalEvent":
        return cls(
            id=data.get("id"),
            title=data.get("title"),
            description=data.get("description"),
            start_date=parse_datetime(data.get("startDate")),
            end_date=parse_datetime(data.get("endDate")),
            location=data.get("location"),
            status=data.get("status"),
            organizer=data.get("organizer"),
            attendees=list(data.get("attendees") or []),
            exchange_id=data.get("exchangeId"),
        )

    def to_native(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.id:
            data["id"] = self.id
        if self.title:
            data["title"] = self.title
        if self.description:
            data["description"] = self.description
        if self.start_date is not None:
            data["startDate"] = format_datetime(self.start_date)
        if self.end_date is not None:
            data["endDate"] = format_datetime(self.end_date)
        if self.location:
            data["location"] = self.location
        if self.status:
            data["status"] = self.status
        if self.organizer:
            data["organizer"] = dict(self.organizer)
        if self.attendees:
            data["attendees"] = [dict(a) for a in self.attendees]
        if self.exchange_id:
            data["exchangeId"] = self.exchange_id
        return data


@dataclass
class RemoteEvent:
    """Calendar item in the Exchange mailbox."""

    id: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    location: Optional[str] = None
    free_busy_status: Optional[str] = None
    organizer: Optional[dict[str, str]] = None
    attendees: list[dict[str, str]] = field(default_factory=list)
    body_type: Optional[str] = None

    @classmethod
    def from_native(cls, data: dict[str, Any]) -> "RemoteEvent":
        return cls(
            id=data.get("id"),
            subject=data.get("subject"),
            body=data.get("body"),
            start=parse_datetime(data.get("start")),
            end=parse_datetime(data.get("end")),
            location=data.get("location"),
            free_busy_status=data.get("freeBusyStatus"),
            organizer=data.get("organizer"),
            attendees=list(data.get("attendees") or []),
            body_type=data.get("bodyType"),
        )

    def to_native(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.id:
            data["id"] = self.id
        if self.subject:
            data["subject"] = self.subject
        if self.body:
            data["body"] = self.body
        if self.start is not None:
            data["start"] = format_datetime(self.start)
        if self.end is not None:
            data["end"] = format_datetime(self.end)
        if self.location:
            data["location"] = self.location
        if self.free_busy_status:
            data["freeBusyStatus"] = self.free_busy_status
        if self.organizer:
            data["organizer"] = dict(self.organizer)
        if self.attendees:
            data["attendees"] = [dict(a) for a in self.attendees]
        if self.body_type:
            data["bodyType"] = self.body_type
        return data


def _event_key(subject: Optional[str], start: Optional[datetime]) -> str:
    start_ms = to_epoch_ms(start)
    return f"{(subject or '').strip().lower()}-{'' if start_ms is None else start_ms}"


def local_event_key(event: LocalEvent) -> str:
    """Matching key "{subject}-{start epoch ms}" for a local event."""
    return _event_key(event.title, event.start_date)


def remote_event_key(event: RemoteEvent) -> str:
    """Matching key "{subject}-{start epoch ms}" for a remote event."""
    return _event_key(event.subject, event.start)


def _local_view(event: LocalEvent) -> dict[str, Any]:
    return {
        "title": event.title,
        "description": event.description,
        "location": event.location,
    }


def _remote_view(event: RemoteEvent) -> dict[str, Any]:
    return {
        "subject": event.subject,
        "body": event.body,
        "location": event.location,
    }


def _instants_differ(
    local: LocalEvent, remote: RemoteEvent, now: Optional[datetime]
) -> bool:
    now = now or utcnow()
    return instants_differ(local.start_date, remote.start, now) or instants_differ(
        local.end_date, remote.end, now
    )


def event_needs_update(
    local: LocalEvent, remote: RemoteEvent, now: Optional[datetime] = None
) -> bool:
    """True if the local event differs from the remote one in text or times."""
    if needs_update(_local_view(local), _remote_view(remote), EVENT_FIELDS):
        return True
    return _instants_differ(local, remote, now)


def event_push_needs_update(
    local: LocalEvent, remote: RemoteEvent, now: Optional[datetime] = None
) -> bool:
    """Push-direction diff; blank local text fields never count as changes."""
    local_view, remote_view = _local_view(local), _remote_view(remote)
    if remote_needs_local_update(local_view, remote_view, EVENT_FIELDS):
        return True
    return _instants_differ(local, remote, now)


def event_to_local(remote: RemoteEvent) -> LocalEvent:
    """Convert a remote calendar item to a local event."""
    return LocalEvent(
        title=remote.subject,
        description=remote.body,
        start_date=remote.start,
        end_date=remote.end,
        location=remote.location,
        status=status_from_free_busy(remote.free_busy_status),
        organizer=dict(remote.organizer) if remote.organizer else None,
        attendees=[dict(a) for a in remote.attendees],
        exchange_id=remote.id,
    )


def event_to_remote(local: LocalEvent) -> RemoteEvent:
    """Convert a local event to a remote calendar item (plain-text body)."""
    return RemoteEvent(
        subject=local.title,
        body=local.description,
        start=local.start_date,
        end=local.end_date,
        location=local.location,
        free_busy_status=free_busy_from_status(local.status),
        organizer=dict(local.organizer) if local.organizer else None,
        attendees=[dict(a) for a in local.attendees],
        body_type="Text" if local.description else None,
    )


__all__ = [
    "REMOTE_CALENDAR_FOLDER",
    "EVENT_FIELDS",
    "FREE_BUSY_TO_STATUS",
    "STATUS_TO_FREE_BUSY",
    "SyncWindow",
    "LocalEvent",
    "RemoteEvent",
    "status_from_free_busy",
    "free_busy_from_status",
    "local_event_key",
    "remote_event_key",
    "event_needs_update",
    "event_push_needs_update",
    "event_to_local",
    "event_to_remote",
]
