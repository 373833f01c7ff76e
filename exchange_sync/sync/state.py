"""
Per-account sync state.

Each (account, entity type) pair has one SyncState. The states for an
account are grouped in an AccountContext that the coordinator owns and hands
to the engines explicitly; there is no process-wide state table.

State machine::

    Idle --begin()--> Running --succeed()-----------> Idle (last_error=None)
                             --fail(message)--------> Idle (last_error=message)
                             --finish_cancelled()---> Idle
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from exchange_sync.api.errors import SyncCancelledError
from exchange_sync.sync.account import Account, EntityType

ALREADY_RUNNING_ERROR = "Sync already in progress"

logger = logging.getLogger(__name__)


@dataclass
class SyncStatistics:
    """Counters from the most recent sync of one entity type."""

    total_synced: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    errors: int = 0
    last_sync_duration_ms: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "total_synced": self.total_synced,
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "errors": self.errors,
            "last_sync_duration_ms": self.last_sync_duration_ms,
        }


class CancellationToken:
    """Cooperative cancellation flag checked by engines between awaits."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise SyncCancelledError("Sync cancelled")


@dataclass
class SyncState:
    """
    Running/idle state, last error and statistics for one entity type.

    Attributes:
        in_progress: True while a sync is running
        last_error: Message from the last failed sync, cleared on begin()
        statistics: Counters from the last completed sync
        last_sync_at: Completion time of the last successful sync
        token: Cancellation token bound to the running sync, None when idle
    """

    entity_type: EntityType
    in_progress: bool = False
    last_error: Optional[str] = None
    statistics: SyncStatistics = field(default_factory=SyncStatistics)
    last_sync_at: Optional[datetime] = None
    token: Optional[CancellationToken] = None

    def begin(self) -> Optional[CancellationToken]:
        """
        Move from Idle to Running.

        Returns:
            A fresh CancellationToken, or None if a sync is already running.
            The check and the transition happen without an intervening await.
        """
        if self.in_progress:
            return None
        self.in_progress = True
        self.last_error = None
        self.token = CancellationToken()
        return self.token

    def succeed(
        self, statistics: SyncStatistics, duration_ms: int, finished_at: datetime
    ) -> None:
        statistics.last_sync_duration_ms = duration_ms
        self.statistics = statistics
        self.last_sync_at = finished_at
        self._idle()

    def fail(self, message: str) -> None:
        self.last_error = message
        self._idle()

    def finish_cancelled(self) -> None:
        self._idle()

    def cancel(self) -> bool:
        """Signal the running sync to stop. Returns False when idle."""
        if not self.in_progress or self.token is None:
            return False
        self.token.cancel()
        return True

    def _idle(self) -> None:
        self.in_progress = False
        self.token = None


@dataclass
class AccountContext:
    """All sync state belonging to one account."""

    account: Account
    states: dict[EntityType, SyncState] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for entity_type in EntityType:
            self.states.setdefault(entity_type, SyncState(entity_type))

    def state_for(self, entity_type: EntityType) -> SyncState:
        return self.states[entity_type]

    def cancel_all(self) -> int:
        """Cancel every running sync for this account; returns how many were."""
        return sum(1 for state in self.states.values() if state.cancel())

    def reset(self) -> None:
        for entity_type in EntityType:
            self.states[entity_type] = SyncState(entity_type)


@dataclass
class SyncOutcome:
    """
    Result of one engine run.

    A non-zero errors count is not a failure; success is False only when the
    run was rejected, raised, or was cancelled.
    """

    entity_type: EntityType
    success: bool
    error: Optional[str] = None
    total_synced: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    errors: int = 0
    duration_ms: int = 0
    cancelled: bool = False

    @classmethod
    def already_running(cls, entity_type: EntityType) -> "SyncOutcome":
        return cls(entity_type=entity_type, success=False, error=ALREADY_RUNNING_ERROR)

    @classmethod
    def from_statistics(
        cls, entity_type: EntityType, stats: SyncStatistics, duration_ms: int
    ) -> "SyncOutcome":
        return cls(
            entity_type=entity_type,
            success=True,
            total_synced=stats.total_synced,
            created=stats.created,
            updated=stats.updated,
            deleted=stats.deleted,
            errors=stats.errors,
            duration_ms=duration_ms,
        )

    def as_dict(self) -> dict[str, Any]:
        """Result in the camelCase shape reported to callers of the sync API."""
        data: dict[str, Any] = {
            "success": self.success,
            "totalSynced": self.total_synced,
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "errors": self.errors,
            "duration": self.duration_ms,
        }
        if self.error is not None:
            data["error"] = self.error
        if self.cancelled:
            data["cancelled"] = True
        return data


__all__ = [
    "ALREADY_RUNNING_ERROR",
    "AccountContext",
    "CancellationToken",
    "SyncOutcome",
    "SyncState",
    "SyncStatistics",
]
