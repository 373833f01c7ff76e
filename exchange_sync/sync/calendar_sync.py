"""
Calendar reconciliation between the Exchange calendar and a local calendar
named "Exchange - {display name}", restricted to a sliding date window.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from exchange_sync.api.paginator import CALENDAR_BATCH_SIZE
from exchange_sync.api.stores import ContainerKind
from exchange_sync.sync.account import Account, EntityType
from exchange_sync.sync.engine import ReconciliationEngine
from exchange_sync.sync.event import (
    REMOTE_CALENDAR_FOLDER,
    LocalEvent,
    RemoteEvent,
    SyncWindow,
    event_needs_update,
    event_push_needs_update,
    event_to_local,
    event_to_remote,
    local_event_key,
    remote_event_key,
)
from exchange_sync.sync.state import CancellationToken, SyncStatistics


class CalendarSync(ReconciliationEngine[LocalEvent, RemoteEvent]):
    """
    Bidirectional calendar sync inside a SyncWindow.

    Full sync covers [now - 30 days, now + 60 days). Incremental sync covers
    [last sync - 1 hour, now + 30 days). Events pair up by subject and start
    time in epoch milliseconds.
    """

    entity_type = EntityType.CALENDAR
    container_kind = ContainerKind.CALENDAR
    remote_container = REMOTE_CALENDAR_FOLDER
    batch_size = CALENDAR_BATCH_SIZE

    def parse_local(self, data: dict[str, Any]) -> LocalEvent:
        return LocalEvent.from_native(data)

    def parse_remote(self, data: dict[str, Any]) -> RemoteEvent:
        return RemoteEvent.from_native(data)

    def local_key(self, item: LocalEvent) -> str:
        return local_event_key(item)

    def remote_key(self, item: RemoteEvent) -> str:
        return remote_event_key(item)

    def pull_needs_update(self, local: LocalEvent, remote: RemoteEvent) -> bool:
        return event_needs_update(local, remote, self._clock())

    def push_needs_update(self, local: LocalEvent, remote: RemoteEvent) -> bool:
        return event_push_needs_update(local, remote, self._clock())

    def to_local_native(self, remote: RemoteEvent) -> dict[str, Any]:
        return event_to_local(remote).to_native()

    def to_remote_native(self, local: LocalEvent) -> dict[str, Any]:
        return event_to_remote(local).to_native()

    def local_in_window(self, local: LocalEvent, window: Optional[SyncWindow]) -> bool:
        # Undated events never appear in a windowed remote listing either
        if window is None:
            return True
        return window.contains(local.start_date)

    def sync_window(
        self, account: Account, last_sync: Optional[datetime]
    ) -> Optional[SyncWindow]:
        now = self._clock()
        if last_sync is None:
            return SyncWindow.full(now)
        return SyncWindow.incremental(last_sync, now)

    async def _incremental_sync(
        self,
        account: Account,
        stats: SyncStatistics,
        token: CancellationToken,
        last_sync: datetime,
    ) -> None:
        container = await self.resolve_container(account)
        token.raise_if_cancelled()
        window = self.sync_window(account, last_sync)
        await self._pull_pass(account, container, window, stats, token)
        await self._push_pass(account, container, window, stats, token)
