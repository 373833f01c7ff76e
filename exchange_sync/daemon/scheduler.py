"""
Daemon scheduler for background Exchange synchronization.

Provides a SyncScheduler class that manages:
- One cancellable asyncio task per account, each on its own sync interval
- Rescheduling a single account without touching the others
- Signal handling for graceful shutdown (SIGTERM/SIGINT)
- PID file management for daemon control
- Per-account statistics of sync cycles
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from exchange_sync.api.errors import ExchangeSyncError
from exchange_sync.sync.coordinator import AccountSyncResult, SyncCoordinator
from exchange_sync.utils.paths import DEFAULT_CONFIG_DIR
from exchange_sync.utils.timeutil import utcnow

logger = logging.getLogger(__name__)


# Default PID file location
DEFAULT_PID_FILE = DEFAULT_CONFIG_DIR / "daemon.pid"


class DaemonError(ExchangeSyncError):
    """Base exception for daemon-related errors."""

    pass


class PIDFileError(DaemonError):
    """Raised when PID file operations fail."""

    pass


class DaemonAlreadyRunningError(DaemonError):
    """Raised when attempting to start a daemon that is already running."""

    pass


@dataclass
class DaemonStats:
    """
    Sync cycle statistics for one scheduled account.
    """

    started_at: datetime = field(default_factory=utcnow)
    sync_count: int = 0
    sync_success_count: int = 0
    sync_error_count: int = 0
    last_sync_at: Optional[datetime] = None
    last_sync_success: bool = False
    last_error: Optional[str] = None


class PIDFileManager:
    """
    Manages PID file for daemon process.

    Provides methods to create, read, and remove PID files for
    daemon process management and duplicate prevention.
    """

    def __init__(self, pid_file: Path | None = None):
        self.pid_file = pid_file or DEFAULT_PID_FILE

    def create(self) -> None:
        """
        Create the PID file with the current process ID.

        Raises:
            PIDFileError: If the PID file cannot be created.
            DaemonAlreadyRunningError: If a daemon is already running.
        """
        existing_pid = self.read()
        if existing_pid is not None:
            if self.is_process_running(existing_pid):
                raise DaemonAlreadyRunningError(
                    f"Daemon already running with PID {existing_pid}"
                )
            logger.warning(
                f"Removing stale PID file (process {existing_pid} not running)"
            )
            self.remove()

        try:
            self.pid_file.parent.mkdir(parents=True, exist_ok=True)
            pid = os.getpid()
            self.pid_file.write_text(str(pid))
            logger.debug(f"Created PID file: {self.pid_file} (PID: {pid})")
        except OSError as e:
            raise PIDFileError(f"Failed to create PID file {self.pid_file}: {e}") from e

    def read(self) -> int | None:
        """
        Read the PID from the PID file.

        Returns:
            The PID stored in the file, or None if the file doesn't exist.

        Raises:
            PIDFileError: If the PID file exists but cannot be read or parsed.
        """
        if not self.pid_file.exists():
            return None

        content = ""
        try:
            content = self.pid_file.read_text().strip()
            return int(content)
        except ValueError as e:
            raise PIDFileError(f"Invalid PID in file {self.pid_file}: {content}") from e
        except OSError as e:
            raise PIDFileError(f"Failed to read PID file {self.pid_file}: {e}") from e

    def remove(self) -> None:
        """Remove the PID file if it exists."""
        if not self.pid_file.exists():
            return

        try:
            self.pid_file.unlink()
            logger.debug(f"Removed PID file: {self.pid_file}")
        except OSError as e:
            raise PIDFileError(f"Failed to remove PID file {self.pid_file}: {e}") from e

    @staticmethod
    def is_process_running(pid: int) -> bool:
        try:
            # Signal 0 only checks that the process exists
            os.kill(pid, 0)
            return True
        except ProcessLookupError:
            return False
        except PermissionError:
            return True


class SyncScheduler:
    """
    Per-account periodic sync on top of a SyncCoordinator.

    Each registered account gets its own task that runs
    coordinator.sync_account() every sync_settings.sync_interval seconds.
    Rescheduling or cancelling one account leaves the other tasks alone.

    Usage:
        scheduler = SyncScheduler(coordinator, pid_file=settings.pid_file)
        asyncio.run(scheduler.run())   # blocks until SIGTERM/SIGINT

    Attributes:
        coordinator: Coordinator whose accounts are scheduled
        incremental: Run incremental syncs instead of full syncs
        run_immediately: Sync each account once before the first wait
        stats: account id -> DaemonStats
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        pid_file: Path | None = None,
        run_immediately: bool = True,
        incremental: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_result: Optional[Callable[[AccountSyncResult], None]] = None,
    ):
        self.coordinator = coordinator
        self.run_immediately = run_immediately
        self.incremental = incremental
        self.on_result = on_result
        self.stats: dict[str, DaemonStats] = {}
        self._pid_manager = PIDFileManager(pid_file)
        self._sleep = sleep
        self._tasks: dict[str, asyncio.Task] = {}
        self._intervals: dict[str, int] = {}
        self._in_flight: dict[str, Optional[asyncio.Task]] = {}
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False

    @property
    def pid_file(self) -> Path:
        return self._pid_manager.pid_file

    @property
    def scheduled_accounts(self) -> list[str]:
        return [
            account_id for account_id, task in self._tasks.items() if not task.done()
        ]

    def interval_for(self, account_id: str) -> Optional[int]:
        return self._intervals.get(account_id)

    # =========================================================================
    # Scheduling
    # =========================================================================

    def schedule(
        self, account_id: str, interval: Optional[int] = None
    ) -> asyncio.Task:
        """
        Start the periodic task for one account.

        Must be called from inside the running event loop. An existing task
        for the account is cancelled first.

        Args:
            account_id: Account registered with the coordinator
            interval: Seconds between syncs; defaults to the account's
                sync_settings.sync_interval

        Raises:
            ValueError: If the account is unknown or the interval is not positive
        """
        context = self.coordinator.get_context(account_id)
        if interval is None:
            interval = context.account.sync_settings.sync_interval
        task = self._start(account_id, interval, self.run_immediately)
        logger.info(f"Scheduled {context.account.email} every {interval}s")
        return task

    def reschedule(self, account_id: str, interval: int) -> asyncio.Task:
        """
        Change one account's interval; its next sync waits a full interval.

        A sync already running for the account is left to finish; the loop
        then waits the new interval.
        """
        context = self.coordinator.get_context(account_id)
        task = self._tasks.get(account_id)
        if task is not None and self._in_flight.get(account_id) is task:
            if interval <= 0:
                raise ValueError(f"Sync interval must be positive, got {interval}")
            self._intervals[account_id] = interval
        else:
            task = self._start(account_id, interval, run_first=False)
        context.account.sync_settings.sync_interval = interval
        logger.info(f"Rescheduled {context.account.email} every {interval}s")
        return task

    def _start(self, account_id: str, interval: int, run_first: bool) -> asyncio.Task:
        if interval <= 0:
            raise ValueError(f"Sync interval must be positive, got {interval}")
        self.cancel(account_id)
        self._intervals[account_id] = interval
        self.stats.setdefault(account_id, DaemonStats())
        task = asyncio.get_running_loop().create_task(
            self._account_loop(account_id, interval, run_first),
            name=f"sync-{account_id}",
        )
        self._tasks[account_id] = task
        return task

    def cancel(self, account_id: str) -> bool:
        """Cancel one account's periodic task. Returns False if none was running."""
        task = self._tasks.pop(account_id, None)
        self._intervals.pop(account_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug(f"Cancelled schedule for {account_id}")
        return True

    def schedule_all(self) -> None:
        for account in self.coordinator.accounts:
            self.schedule(account.id)

    async def _account_loop(
        self, account_id: str, interval: int, run_first: bool
    ) -> None:
        task = asyncio.current_task()
        first = run_first
        while True:
            if not first:
                interval = self._intervals.get(account_id, interval)
                logger.debug(f"{account_id}: next sync in {interval}s")
                await self._sleep(interval)
            first = False
            self._in_flight[account_id] = task
            try:
                await self.run_sync(account_id)
            finally:
                if self._in_flight.get(account_id) is task:
                    del self._in_flight[account_id]

    async def run_sync(self, account_id: str) -> bool:
        """
        Run one sync cycle for an account and update its statistics.

        Returns:
            True if every engine succeeded
        """
        stats = self.stats.setdefault(account_id, DaemonStats())
        stats.sync_count += 1
        stats.last_sync_at = utcnow()

        try:
            logger.info(f"Starting sync for {account_id} (cycle #{stats.sync_count})")
            result = await self.coordinator.sync_account(
                account_id, incremental=self.incremental
            )
        except Exception as e:
            stats.sync_error_count += 1
            stats.last_sync_success = False
            stats.last_error = str(e)
            logger.error(f"Sync for {account_id} failed with exception: {e}")
            return False

        if self.on_result is not None:
            self.on_result(result)

        if result.success:
            stats.sync_success_count += 1
            stats.last_sync_success = True
            stats.last_error = None
            logger.info(
                f"Sync for {account_id} completed: {result.total_synced} synced, "
                f"{result.errors} errors"
            )
        else:
            stats.sync_error_count += 1
            stats.last_sync_success = False
            stats.last_error = "; ".join(
                f"{t.value}: {result.outcomes[t].error}"
                for t in result.failed_entities()
            )
            logger.warning(f"Sync for {account_id} failed: {stats.last_error}")
        return result.success

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> bool:
        try:
            for signum in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(signum, self._signal_handler, signum)
        except (NotImplementedError, RuntimeError):
            # Windows event loops and non-main threads
            logger.debug("Signal handlers not supported in this context")
            return False
        logger.debug("Signal handlers installed for SIGTERM and SIGINT")
        return True

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(signum)
        logger.debug("Signal handlers removed")

    def _signal_handler(self, signum: int) -> None:
        signal_name = signal.Signals(signum).name
        logger.info(f"Received {signal_name}, initiating graceful shutdown...")
        self.stop()

    async def run(self, manage_pid_file: bool = True) -> None:
        """
        Run the scheduler until stop() is called or a shutdown signal arrives.

        On exit every account task is cancelled and awaited, and the PID file
        is removed.

        Raises:
            DaemonAlreadyRunningError: If another daemon is already running.
            PIDFileError: If the PID file cannot be written.
        """
        loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()

        if manage_pid_file:
            self._pid_manager.create()
            logger.info(
                f"Daemon started (PID: {os.getpid()}, PID file: {self.pid_file})"
            )
        handlers_installed = self._install_signal_handlers(loop)
        self._running = True

        try:
            self.schedule_all()
            await self._stop_event.wait()
        finally:
            tasks = list(self._tasks.values())
            for account_id in list(self._tasks):
                self.cancel(account_id)
            await asyncio.gather(*tasks, return_exceptions=True)
            self._running = False
            if handlers_installed:
                self._remove_signal_handlers(loop)
            if manage_pid_file:
                self._pid_manager.remove()
            logger.info("Daemon scheduler stopped")

    def stop(self) -> None:
        """Request shutdown of a running scheduler."""
        logger.info("Stop requested")
        if self._stop_event is not None:
            self._stop_event.set()

    def is_running(self) -> bool:
        return self._running

    @classmethod
    def get_running_pid(cls, pid_file: Path | None = None) -> int | None:
        """PID of the running daemon, or None if none is running."""
        manager = PIDFileManager(pid_file)
        pid = manager.read()

        if pid is None:
            return None
        if manager.is_process_running(pid):
            return pid
        return None

    @classmethod
    def stop_running_daemon(cls, pid_file: Path | None = None) -> bool:
        """
        Send SIGTERM to the running daemon.

        Returns:
            True if the signal was sent, False if no daemon is running.
        """
        pid = cls.get_running_pid(pid_file)

        if pid is None:
            logger.info("No running daemon found")
            return False

        try:
            os.kill(pid, signal.SIGTERM)
            logger.info(f"Sent SIGTERM to daemon (PID: {pid})")
            return True
        except ProcessLookupError:
            logger.warning(f"Daemon process {pid} not found")
            return False
        except PermissionError:
            logger.error(f"Permission denied sending signal to PID {pid}")
            return False


__all__ = [
    "SyncScheduler",
    "DaemonStats",
    "DaemonError",
    "PIDFileError",
    "DaemonAlreadyRunningError",
    "PIDFileManager",
    "DEFAULT_PID_FILE",
]
