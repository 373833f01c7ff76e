"""
SQLite database module for sync state persistence.

Stores, per account and entity type, the last successful sync time, the
last error and the statistics of the most recent run, so status survives
restarts and the daemon can run incremental syncs.
"""

import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

from exchange_sync.sync.state import SyncStatistics
from exchange_sync.utils.timeutil import format_datetime, parse_datetime, utcnow

SCHEMA = """
CREATE TABLE IF NOT EXISTS sync_state (
    id INTEGER PRIMARY KEY,
    account_id TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    last_sync_at TEXT,
    last_error TEXT,
    total_synced INTEGER NOT NULL DEFAULT 0,
    created INTEGER NOT NULL DEFAULT 0,
    updated INTEGER NOT NULL DEFAULT 0,
    deleted INTEGER NOT NULL DEFAULT 0,
    errors INTEGER NOT NULL DEFAULT 0,
    last_sync_duration_ms INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT,
    UNIQUE(account_id, entity_type)
);

CREATE INDEX IF NOT EXISTS idx_sync_state_account ON sync_state(account_id);
"""

_COLUMNS = (
    "account_id",
    "entity_type",
    "last_sync_at",
    "last_error",
    "total_synced",
    "created",
    "updated",
    "deleted",
    "errors",
    "last_sync_duration_ms",
    "updated_at",
)


def _row_to_dict(row: sqlite3.Row) -> dict[str, Any]:
    data = dict(row)
    data["last_sync_at"] = parse_datetime(data.get("last_sync_at"))
    data["updated_at"] = parse_datetime(data.get("updated_at"))
    return data


class SyncDatabase:
    """
    SQLite database manager for per-account, per-entity sync state.

    Usage:
        db = SyncDatabase('/path/to/sync.db')
        db.initialize()

        # Or use in-memory for testing:
        db = SyncDatabase(':memory:')
        db.initialize()
    """

    def __init__(self, db_path: Union[str, Path]):
        """
        Initialize the database manager.

        Args:
            db_path: Path to SQLite database file, or ':memory:' for in-memory database
        """
        self.db_path = str(db_path)
        self._shared_connection: Optional[sqlite3.Connection] = None

    @property
    def is_memory(self) -> bool:
        return self.db_path == ":memory:"

    def _get_connection(self) -> sqlite3.Connection:
        # In-memory databases keep one connection so the schema persists
        if self.is_memory:
            if self._shared_connection is None:
                self._shared_connection = sqlite3.connect(":memory:")
                self._shared_connection.row_factory = sqlite3.Row
            return self._shared_connection

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Commits on success, rolls back on error.

        Usage:
            with db.connection() as conn:
                conn.execute("SELECT * FROM sync_state")
        """
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if not self.is_memory:
                conn.close()

    def initialize(self) -> None:
        """Create the schema (and the database directory) if missing."""
        if not self.is_memory:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            conn.executescript(SCHEMA)

    def close(self) -> None:
        if self._shared_connection is not None:
            self._shared_connection.close()
            self._shared_connection = None

    # =========================================================================
    # Sync State Operations
    # =========================================================================

    def get_sync_state(
        self, account_id: str, entity_type: str
    ) -> Optional[dict[str, Any]]:
        """
        Get stored state for one account and entity type.

        Returns:
            Dictionary of the stored columns (timestamps parsed to datetime),
            or None if never synced
        """
        with self.connection() as conn:
            cursor = conn.execute(
                f"SELECT {', '.join(_COLUMNS)} FROM sync_state "
                "WHERE account_id = ? AND entity_type = ?",
                (account_id, entity_type),
            )
            row = cursor.fetchone()
            return _row_to_dict(row) if row else None

    def get_account_states(self, account_id: str) -> dict[str, dict[str, Any]]:
        """Stored state for every entity type of an account, keyed by type."""
        with self.connection() as conn:
            cursor = conn.execute(
                f"SELECT {', '.join(_COLUMNS)} FROM sync_state "
                "WHERE account_id = ? ORDER BY entity_type",
                (account_id,),
            )
            return {row["entity_type"]: _row_to_dict(row) for row in cursor}

    def update_sync_state(
        self,
        account_id: str,
        entity_type: str,
        statistics: Optional[SyncStatistics] = None,
        last_sync_at: Optional[datetime] = None,
        last_error: Optional[str] = None,
    ) -> None:
        """
        Record the outcome of a sync run.

        A successful run passes statistics and last_sync_at. A failed run
        passes only last_error; the previous statistics and last_sync_at are
        kept.
        """
        now = format_datetime(utcnow())

        with self.connection() as conn:
            if statistics is None:
                conn.execute(
                    """
                    INSERT INTO sync_state (account_id, entity_type, last_error,
                                            updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(account_id, entity_type) DO UPDATE SET
                        last_error = excluded.last_error,
                        updated_at = excluded.updated_at
                    """,
                    (account_id, entity_type, last_error, now),
                )
                return

            conn.execute(
                """
                INSERT INTO sync_state (
                    account_id, entity_type, last_sync_at, last_error,
                    total_synced, created, updated, deleted, errors,
                    last_sync_duration_ms, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(account_id, entity_type) DO UPDATE SET
                    last_sync_at = COALESCE(excluded.last_sync_at, last_sync_at),
                    last_error = excluded.last_error,
                    total_synced = excluded.total_synced,
                    created = excluded.created,
                    updated = excluded.updated,
                    deleted = excluded.deleted,
                    errors = excluded.errors,
                    last_sync_duration_ms = excluded.last_sync_duration_ms,
                    updated_at = excluded.updated_at
                """,
                (
                    account_id,
                    entity_type,
                    format_datetime(last_sync_at),
                    last_error,
                    statistics.total_synced,
                    statistics.created,
                    statistics.updated,
                    statistics.deleted,
                    statistics.errors,
                    statistics.last_sync_duration_ms,
                    now,
                ),
            )

    def clear_account_state(self, account_id: str) -> int:
        """Delete all stored state for an account; returns rows removed."""
        with self.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM sync_state WHERE account_id = ?", (account_id,)
            )
            return cursor.rowcount

    def clear_all_state(self) -> None:
        """Clear all sync state (forces full syncs everywhere)."""
        with self.connection() as conn:
            conn.execute("DELETE FROM sync_state")

    def list_account_ids(self) -> list[str]:
        with self.connection() as conn:
            cursor = conn.execute(
                "SELECT DISTINCT account_id FROM sync_state ORDER BY account_id"
            )
            return [row["account_id"] for row in cursor]
