"""
Per-account sync driver.

The coordinator owns one AccountContext per registered account and runs the
account's enabled engines (email, contacts, calendar) concurrently. One
engine failing does not cancel the others; each successful engine moves its
account.last_sync timestamp forward and has its statistics persisted.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Optional

from exchange_sync.api.client import ExchangeClient
from exchange_sync.api.paginator import DEFAULT_PAGE_DELAY
from exchange_sync.api.retry import (
    DEFAULT_BASE_DELAY,
    DEFAULT_MAX_RETRIES,
    RetryExecutor,
)
from exchange_sync.api.stores import LocalStore, RemoteStore, TokenProvider
from exchange_sync.sync.account import Account, EntityType
from exchange_sync.sync.calendar_sync import CalendarSync
from exchange_sync.sync.contact_sync import ContactSync
from exchange_sync.sync.email_sync import EmailSync
from exchange_sync.sync.engine import ReconciliationEngine
from exchange_sync.sync.state import (
    ALREADY_RUNNING_ERROR,
    AccountContext,
    SyncOutcome,
    SyncStatistics,
)
from exchange_sync.utils.timeutil import utcnow

if TYPE_CHECKING:
    from exchange_sync.storage.db import SyncDatabase

logger = logging.getLogger(__name__)


@dataclass
class AccountSyncResult:
    """
    Aggregated result of syncing one account.

    A non-zero errors count is not a failure; success is False only when an
    engine was rejected, raised, or was cancelled.
    """

    account_id: str
    email: str
    outcomes: dict[EntityType, SyncOutcome] = field(default_factory=dict)
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return all(outcome.success for outcome in self.outcomes.values())

    @property
    def total_synced(self) -> int:
        return sum(o.total_synced for o in self.outcomes.values())

    @property
    def created(self) -> int:
        return sum(o.created for o in self.outcomes.values())

    @property
    def updated(self) -> int:
        return sum(o.updated for o in self.outcomes.values())

    @property
    def errors(self) -> int:
        return sum(o.errors for o in self.outcomes.values())

    def failed_entities(self) -> list[EntityType]:
        return [t for t, o in self.outcomes.items() if not o.success]

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "totalSynced": self.total_synced,
            "created": self.created,
            "updated": self.updated,
            "errors": self.errors,
            "duration": self.duration_ms,
            "results": {t.value: o.as_dict() for t, o in self.outcomes.items()},
        }

    def summary(self) -> str:
        """Generate a human-readable summary of the account sync."""
        lines = [
            f"Sync Summary for {self.email}:",
            f"  Synced: {self.total_synced} "
            f"({self.created} created, {self.updated} updated)",
            f"  Errors: {self.errors}",
            f"  Duration: {self.duration_ms / 1000:.1f}s",
        ]

        if self.outcomes:
            lines.append("")
        for entity_type, outcome in self.outcomes.items():
            if outcome.success:
                status = (
                    f"{outcome.created} created, {outcome.updated} updated, "
                    f"{outcome.errors} errors"
                )
            else:
                status = f"FAILED: {outcome.error}"
            lines.append(f"  {entity_type.value.capitalize()}: {status}")

        return "\n".join(lines)


class SyncCoordinator:
    """
    Runs reconciliation engines for registered accounts.

    Attributes:
        engines: Engine per entity type
        database: Optional SyncDatabase receiving statistics and timestamps

    Usage:
        coordinator = SyncCoordinator.build(remote_store, local_store, tokens)
        coordinator.register_account(account)
        result = await coordinator.sync_account(account.id)
        print(result.summary())
    """

    def __init__(
        self,
        engines: Iterable[ReconciliationEngine],
        database: Optional[SyncDatabase] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engines: dict[EntityType, ReconciliationEngine] = {
            engine.entity_type: engine for engine in engines
        }
        self.database = database
        self._clock = clock
        self._contexts: dict[str, AccountContext] = {}

    @classmethod
    def build(
        cls,
        remote_store: RemoteStore,
        local_store: LocalStore,
        token_provider: TokenProvider,
        *,
        database: Optional[SyncDatabase] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_BASE_DELAY,
        page_delay: float = DEFAULT_PAGE_DELAY,
        batch_sizes: Optional[Mapping[EntityType, int]] = None,
    ) -> "SyncCoordinator":
        """
        Wire the client and the three engines.

        Args:
            remote_store: RemoteStore capability
            local_store: LocalStore capability
            token_provider: TokenProvider capability
            database: Optional SyncDatabase for persisted state
            max_retries: Retries per remote call after the first attempt
            base_delay: Retry backoff base in seconds
            page_delay: Pause between remote pages in seconds
            batch_sizes: Page size overrides per entity type
        """
        client = ExchangeClient(
            remote_store,
            token_provider,
            RetryExecutor(max_retries=max_retries, base_delay=base_delay),
        )
        sizes = dict(batch_sizes or {})
        engines: list[ReconciliationEngine] = [
            EmailSync(
                client,
                local_store,
                page_delay=page_delay,
                batch_size=sizes.get(EntityType.EMAIL),
            ),
            ContactSync(
                client,
                local_store,
                page_delay=page_delay,
                batch_size=sizes.get(EntityType.CONTACTS),
            ),
            CalendarSync(
                client,
                local_store,
                page_delay=page_delay,
                batch_size=sizes.get(EntityType.CALENDAR),
            ),
        ]
        return cls(engines, database=database)

    # =========================================================================
    # Accounts
    # =========================================================================

    @property
    def accounts(self) -> list[Account]:
        return [context.account for context in self._contexts.values()]

    def get_context(self, account_id: str) -> AccountContext:
        try:
            return self._contexts[account_id]
        except KeyError:
            raise ValueError(f"Unknown account: {account_id}") from None

    def register_account(self, account: Account) -> AccountContext:
        """
        Start tracking an account.

        Persisted statistics and timestamps are restored into the new
        context; account.last_sync is only filled where it is empty.
        """
        if account.id in self._contexts:
            context = self._contexts[account.id]
            context.account = account
            return context

        context = AccountContext(account)
        if self.database is not None:
            for entity_type_value, row in self.database.get_account_states(
                account.id
            ).items():
                try:
                    entity_type = EntityType(entity_type_value)
                except ValueError:
                    continue
                state = context.state_for(entity_type)
                state.last_error = row["last_error"]
                state.last_sync_at = row["last_sync_at"]
                state.statistics = SyncStatistics(
                    total_synced=row["total_synced"],
                    created=row["created"],
                    updated=row["updated"],
                    deleted=row["deleted"],
                    errors=row["errors"],
                    last_sync_duration_ms=row["last_sync_duration_ms"],
                )
                if account.last_sync.get(entity_type) is None:
                    account.last_sync.set(entity_type, row["last_sync_at"])

        self._contexts[account.id] = context
        logger.debug(f"Registered account {account.email}")
        return context

    def remove_account(self, account_id: str) -> bool:
        """
        Stop tracking an account.

        In-flight syncs are cancelled at their next checkpoint and persisted
        state is cleared.

        Returns:
            False if the account was not registered
        """
        context = self._contexts.pop(account_id, None)
        if context is None:
            return False

        cancelled = context.cancel_all()
        if cancelled:
            logger.info(f"Cancelled {cancelled} running sync(s) for {account_id}")
        if self.database is not None:
            self.database.clear_account_state(account_id)
        logger.info(f"Removed account {context.account.email}")
        return True

    # =========================================================================
    # Sync
    # =========================================================================

    async def sync_account(
        self,
        account_id: str,
        incremental: bool = False,
        entity_types: Optional[Iterable[EntityType]] = None,
    ) -> AccountSyncResult:
        """
        Sync one account's enabled entity types concurrently.

        Args:
            account_id: Registered account id
            incremental: Use incremental_sync() instead of sync()
            entity_types: Restrict to these types (still subject to toggles)

        Raises:
            ValueError: If the account is not registered
        """
        context = self.get_context(account_id)
        account = context.account
        requested = set(entity_types) if entity_types is not None else None
        types = [
            t
            for t in account.enabled_entity_types()
            if t in self.engines and (requested is None or t in requested)
        ]

        result = AccountSyncResult(account_id=account.id, email=account.email)
        if not types:
            logger.info(f"No entity types enabled for {account.email}")
            return result

        logger.info(
            f"Syncing {account.email}: {', '.join(t.value for t in types)}"
            f"{' (incremental)' if incremental else ''}"
        )
        started = time.monotonic()

        runs = [
            (
                self.engines[t].incremental_sync(context)
                if incremental
                else self.engines[t].sync(context)
            )
            for t in types
        ]
        raw_results = await asyncio.gather(*runs, return_exceptions=True)

        for entity_type, raw in zip(types, raw_results):
            if isinstance(raw, BaseException):
                logger.error(
                    f"{entity_type.value} sync for {account.email} failed: {raw}"
                )
                outcome = SyncOutcome(
                    entity_type=entity_type,
                    success=False,
                    error=str(raw) or type(raw).__name__,
                )
            else:
                outcome = raw
            result.outcomes[entity_type] = outcome
            self._record(context, entity_type, outcome)

        result.duration_ms = int((time.monotonic() - started) * 1000)
        return result

    async def sync_all(self, incremental: bool = False) -> list[AccountSyncResult]:
        """Sync every registered account concurrently."""
        return list(
            await asyncio.gather(
                *(
                    self.sync_account(account_id, incremental=incremental)
                    for account_id in list(self._contexts)
                )
            )
        )

    def _record(
        self, context: AccountContext, entity_type: EntityType, outcome: SyncOutcome
    ) -> None:
        # Removed while in flight
        if self._contexts.get(context.account.id) is not context:
            return

        account = context.account
        state = context.state_for(entity_type)

        if outcome.success:
            finished_at = state.last_sync_at or self._clock()
            account.last_sync.set(entity_type, finished_at)
            if self.database is not None:
                self.database.update_sync_state(
                    account.id,
                    entity_type.value,
                    statistics=state.statistics,
                    last_sync_at=finished_at,
                )
            return

        # Rejected and cancelled runs leave no trace
        if outcome.cancelled or outcome.error == ALREADY_RUNNING_ERROR:
            return
        if self.database is not None:
            self.database.update_sync_state(
                account.id, entity_type.value, last_error=outcome.error
            )

    async def health_check(self, account_id: str) -> bool:
        """Whether the account's mailbox answers with its current credentials."""
        context = self.get_context(account_id)
        if not self.engines:
            return False
        client = next(iter(self.engines.values())).client
        return await client.health_check(context.account)

    def status(self, account_id: str) -> dict[str, dict[str, Any]]:
        """Current in-memory state per entity type for an account."""
        context = self.get_context(account_id)
        return {
            entity_type.value: {
                "in_progress": state.in_progress,
                "last_error": state.last_error,
                "last_sync_at": state.last_sync_at,
                "statistics": state.statistics.as_dict(),
            }
            for entity_type, state in context.states.items()
        }


__all__ = ["SyncCoordinator", "AccountSyncResult"]
