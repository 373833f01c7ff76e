"""
Reconciliation engine base for one entity type.

A sync run for an account goes through:
1. Single-flight check on the account's SyncState (rejected, not queued)
2. Resolution of the local target container, created if absent
3. Remote -> local pass: page through remote items, match each against a
   key index of local items, create or update locally
4. Local -> remote pass: list local items, match each against a key index
   of all remote items, create or update remotely
5. Totals, duration and timestamp stamped onto the state

Error levels:
- per item: counted in statistics.errors, the loop continues
- per pass: a failed page fetch counts one error and ends that pass
- engine: anything else marks the state failed and propagates
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime
from typing import Any, Generic, Optional, TypeVar

from exchange_sync.api.client import ExchangeClient
from exchange_sync.api.errors import SyncCancelledError
from exchange_sync.api.paginator import DEFAULT_PAGE_DELAY, Paginator
from exchange_sync.api.stores import ContainerKind, LocalContainer, LocalStore, Page
from exchange_sync.sync.account import Account, EntityType
from exchange_sync.sync.event import SyncWindow
from exchange_sync.sync.state import (
    AccountContext,
    CancellationToken,
    SyncOutcome,
    SyncStatistics,
)
from exchange_sync.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

CANCELLED_ERROR = "Sync cancelled"

L = TypeVar("L")
R = TypeVar("R")


def container_name(account: Account) -> str:
    """Name of the local address book / calendar created for an account."""
    return f"Exchange - {account.display_name}"


class ReconciliationEngine(Generic[L, R]):
    """
    Two-pass reconciliation between the remote mailbox and the local store.

    Subclasses set the class attributes and implement the item hooks
    (parse_local, parse_remote, local_key, remote_key, pull_needs_update,
    push_needs_update, to_local_native, to_remote_native). Items are typed
    records; native dicts only appear at the store boundary.

    Attributes:
        entity_type: Which state slot of the AccountContext this engine drives
        container_kind: Kind of local container items are written to
        remote_container: Remote folder id listed and written to
        batch_size: Page size for remote listing
    """

    entity_type: EntityType
    container_kind: ContainerKind
    remote_container: str = ""
    batch_size: int = 50

    def __init__(
        self,
        client: ExchangeClient,
        local_store: LocalStore,
        page_delay: float = DEFAULT_PAGE_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
        batch_size: Optional[int] = None,
    ):
        """
        Initialize the engine.

        Args:
            client: Authorized, retried gateway to the remote store
            local_store: Local store capability
            page_delay: Pause between remote pages in seconds
            sleep: Awaitable sleep used between pages
            clock: Returns the current aware datetime
            batch_size: Overrides the entity's default page size
        """
        self.client = client
        self.local_store = local_store
        self.page_delay = page_delay
        self._sleep = sleep
        self._clock = clock
        if batch_size is not None:
            self.batch_size = batch_size

    # =========================================================================
    # Item hooks
    # =========================================================================

    def parse_local(self, data: dict[str, Any]) -> L:
        raise NotImplementedError

    def parse_remote(self, data: dict[str, Any]) -> R:
        raise NotImplementedError

    def local_key(self, item: L) -> str:
        raise NotImplementedError

    def remote_key(self, item: R) -> str:
        raise NotImplementedError

    def pull_needs_update(self, local: L, remote: R) -> bool:
        raise NotImplementedError

    def push_needs_update(self, local: L, remote: R) -> bool:
        raise NotImplementedError

    def to_local_native(self, remote: R) -> dict[str, Any]:
        raise NotImplementedError

    def to_remote_native(self, local: L) -> dict[str, Any]:
        raise NotImplementedError

    def local_in_window(self, local: L, window: Optional[SyncWindow]) -> bool:
        return True

    # =========================================================================
    # Public API
    # =========================================================================

    async def sync(self, context: AccountContext) -> SyncOutcome:
        """
        Run a full two-pass sync for the context's account.

        Returns:
            SyncOutcome; success=False with "Sync already in progress" when a
            sync for this account and entity type is still running

        Raises:
            Exception: Engine-level failures, after marking the state failed
        """
        return await self._run(context, self._full_sync)

    async def incremental_sync(self, context: AccountContext) -> SyncOutcome:
        """
        Sync only what changed since the last successful sync.

        Falls back to a full sync when this entity type has never synced.
        """
        last_sync = self.last_sync_for(context)
        if last_sync is None:
            logger.info(
                f"No previous {self.entity_type.value} sync for "
                f"{context.account.email}, running full sync"
            )
            return await self.sync(context)

        async def run(
            account: Account, stats: SyncStatistics, token: CancellationToken
        ) -> None:
            await self._incremental_sync(account, stats, token, last_sync)

        return await self._run(context, run)

    def cancel(self, context: AccountContext) -> bool:
        """Cancel this engine's running sync for the account, if any."""
        return context.state_for(self.entity_type).cancel()

    def last_sync_for(self, context: AccountContext) -> Optional[datetime]:
        return (
            context.account.last_sync.get(self.entity_type)
            or context.state_for(self.entity_type).last_sync_at
        )

    # =========================================================================
    # State machine
    # =========================================================================

    async def _run(
        self,
        context: AccountContext,
        body: Callable[
            [Account, SyncStatistics, CancellationToken], Awaitable[None]
        ],
    ) -> SyncOutcome:
        account = context.account
        state = context.state_for(self.entity_type)
        label = f"{self.entity_type.value} sync for {account.email}"

        token = state.begin()
        if token is None:
            logger.warning(f"{label} already in progress, rejecting request")
            return SyncOutcome.already_running(self.entity_type)

        logger.info(f"Starting {label}")
        started = time.monotonic()
        stats = SyncStatistics()

        try:
            await body(account, stats, token)

        except SyncCancelledError:
            state.finish_cancelled()
            logger.info(f"{label} cancelled")
            return SyncOutcome(
                entity_type=self.entity_type,
                success=False,
                error=CANCELLED_ERROR,
                created=stats.created,
                updated=stats.updated,
                errors=stats.errors,
                total_synced=stats.created + stats.updated,
                duration_ms=self._elapsed_ms(started),
                cancelled=True,
            )

        except asyncio.CancelledError:
            state.finish_cancelled()
            raise

        except Exception as e:
            state.fail(str(e))
            logger.error(f"{label} failed: {e}")
            raise

        stats.total_synced = stats.created + stats.updated
        duration_ms = self._elapsed_ms(started)
        state.succeed(stats, duration_ms, self._clock())

        logger.info(
            f"Completed {label}: {stats.created} created, {stats.updated} updated, "
            f"{stats.errors} errors in {duration_ms}ms"
        )
        return SyncOutcome.from_statistics(self.entity_type, stats, duration_ms)

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    # =========================================================================
    # Sync bodies
    # =========================================================================

    async def _full_sync(
        self, account: Account, stats: SyncStatistics, token: CancellationToken
    ) -> None:
        container = await self.resolve_container(account)
        token.raise_if_cancelled()
        window = self.sync_window(account, None)
        await self._pull_pass(account, container, window, stats, token)
        await self._push_pass(account, container, window, stats, token)

    async def _incremental_sync(
        self,
        account: Account,
        stats: SyncStatistics,
        token: CancellationToken,
        last_sync: datetime,
    ) -> None:
        """Incremental body; subclasses without change tracking keep this no-op."""
        logger.info(
            f"Incremental {self.entity_type.value} sync has no change tracking, "
            f"nothing to do for {account.email}"
        )

    def sync_window(
        self, account: Account, last_sync: Optional[datetime]
    ) -> Optional[SyncWindow]:
        return None

    async def resolve_container(self, account: Account) -> LocalContainer:
        """Find the account's local container by name, creating it if absent."""
        name = container_name(account)
        containers = await self.local_store.list_containers(
            account, self.container_kind
        )
        for container in containers:
            if container.name == name:
                return container

        logger.info(f"Creating local {self.container_kind.value} '{name}'")
        return await self.local_store.create_container(
            account, name, self.container_kind
        )

    # =========================================================================
    # Passes
    # =========================================================================

    def _paginator(self) -> Paginator:
        return Paginator(self.batch_size, page_delay=self.page_delay, sleep=self._sleep)

    def _fetch_remote_page(
        self, account: Account, window: Optional[SyncWindow]
    ) -> Callable[[int, int], Awaitable[Page]]:
        async def fetch(offset: int, limit: int) -> Page:
            return await self.client.list_items(
                account,
                self.remote_container,
                limit=limit,
                offset=offset,
                window=window.as_tuple() if window else None,
            )

        return fetch

    @staticmethod
    def _index(items: Iterable[Any], key: Callable[[Any], str]) -> dict[str, Any]:
        return {key(item): item for item in items}

    async def _list_local(
        self, container: LocalContainer, window: Optional[SyncWindow]
    ) -> list[L]:
        items = [
            self.parse_local(data)
            for data in await self.local_store.list_items(container.id)
        ]
        return [item for item in items if self.local_in_window(item, window)]

    async def _pull_pass(
        self,
        account: Account,
        container: LocalContainer,
        window: Optional[SyncWindow],
        stats: SyncStatistics,
        token: CancellationToken,
    ) -> None:
        """Remote -> local: create missing items, update changed ones."""
        local_index = self._index(
            await self._list_local(container, window), self.local_key
        )
        token.raise_if_cancelled()

        paginator = self._paginator()
        try:
            async for page in paginator.iter_pages(
                self._fetch_remote_page(account, window)
            ):
                for data in page:
                    token.raise_if_cancelled()
                    await self._pull_item(data, container, local_index, stats, token)
        except SyncCancelledError:
            raise
        except Exception as e:
            stats.errors += 1
            logger.error(
                f"Fetching remote {self.entity_type.value} failed, "
                f"ending remote -> local pass: {e}"
            )

    async def _pull_item(
        self,
        data: dict[str, Any],
        container: LocalContainer,
        local_index: dict[str, L],
        stats: SyncStatistics,
        token: CancellationToken,
    ) -> None:
        try:
            remote = self.parse_remote(data)
            existing = local_index.get(self.remote_key(remote))

            if existing is None:
                await self.local_store.create_item(
                    container.id, self.to_local_native(remote)
                )
                token.raise_if_cancelled()
                stats.created += 1
            elif self.pull_needs_update(existing, remote):
                await self.local_store.update_item(
                    existing.id, self.to_local_native(remote)
                )
                token.raise_if_cancelled()
                stats.updated += 1

        except SyncCancelledError:
            raise
        except Exception as e:
            stats.errors += 1
            logger.warning(
                f"Failed to sync remote {self.entity_type.value} item "
                f"{data.get('id')}: {e}"
            )

    async def _push_pass(
        self,
        account: Account,
        container: LocalContainer,
        window: Optional[SyncWindow],
        stats: SyncStatistics,
        token: CancellationToken,
    ) -> None:
        """Local -> remote: create missing items, update changed ones."""
        local_items = await self._list_local(container, window)
        token.raise_if_cancelled()

        fetched = await self._paginator().fetch_all(
            self._fetch_remote_page(account, window)
        )
        token.raise_if_cancelled()

        if fetched.error is not None:
            stats.errors += 1
            logger.error(
                f"Fetching remote {self.entity_type.value} failed, "
                f"skipping local -> remote pass: {fetched.error}"
            )
            return
        if not fetched.complete:
            logger.warning(
                f"Remote {self.entity_type.value} listing ended early, "
                f"matching against {len(fetched.items)} items"
            )

        remote_index: dict[str, R] = {}
        for data in fetched.items:
            try:
                remote = self.parse_remote(data)
            except Exception as e:
                stats.errors += 1
                logger.warning(f"Skipping unreadable remote item {data.get('id')}: {e}")
                continue
            remote_index[self.remote_key(remote)] = remote

        for local in local_items:
            token.raise_if_cancelled()
            await self._push_item(account, local, remote_index, stats, token)

    async def _push_item(
        self,
        account: Account,
        local: L,
        remote_index: dict[str, R],
        stats: SyncStatistics,
        token: CancellationToken,
    ) -> None:
        try:
            existing = remote_index.get(self.local_key(local))

            if existing is None:
                await self.client.create_item(
                    account, self.remote_container, self.to_remote_native(local)
                )
                token.raise_if_cancelled()
                stats.created += 1
            elif self.push_needs_update(local, existing):
                await self.client.update_item(
                    account, existing.id, self.to_remote_native(local)
                )
                token.raise_if_cancelled()
                stats.updated += 1

        except SyncCancelledError:
            raise
        except Exception as e:
            stats.errors += 1
            logger.warning(
                f"Failed to sync local {self.entity_type.value} item "
                f"{getattr(local, 'id', None)}: {e}"
            )


__all__ = ["ReconciliationEngine", "container_name", "CANCELLED_ERROR"]
