"""Local state management for sync client.

This module provides:
- LocalSyncState: SQLite-based durable client state
- PendingSyncEntry: The payload waiting to be uploaded

Two things survive a restart: the single pending entry (offline queue) and
the last lastSync the server acknowledged. Both are read at startup.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from cloudsync.core.timestamps import ensure_utc, parse_timestamp

logger = logging.getLogger(__name__)


@dataclass
class PendingSyncEntry:
    """Payload queued for upload.

    Attributes:
        payload: Opaque application state.
        queued_at: When the payload was queued, which is also when this
            device's copy was last modified.
    """

    payload: Any
    queued_at: datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> PendingSyncEntry:
        """Create PendingSyncEntry from database row."""
        return cls(
            payload=json.loads(row["payload"]),
            queued_at=ensure_utc(datetime.fromisoformat(row["queued_at"])),
        )


class LocalSyncState:
    """SQLite-based local state for sync client.

    The pending table holds at most one row: queuing a payload replaces
    whatever was queued before.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize local state database.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Lock for thread-safe database access
        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")

        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            -- Single-slot offline queue
            CREATE TABLE IF NOT EXISTS pending_sync (
                slot INTEGER PRIMARY KEY CHECK (slot = 1),
                payload TEXT NOT NULL,
                queued_at TEXT NOT NULL
            );

            -- Key-value sync state
            CREATE TABLE IF NOT EXISTS sync_state (
                key TEXT PRIMARY KEY,
                value TEXT
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # === Pending entry ===

    def get_pending(self) -> PendingSyncEntry | None:
        """Get the queued entry, if any."""
        with self._lock:
            cursor = self._conn.execute("SELECT payload, queued_at FROM pending_sync WHERE slot = 1")
            row = cursor.fetchone()
        if row is None:
            return None
        return PendingSyncEntry.from_row(row)

    def set_pending(self, payload: Any, queued_at: datetime) -> PendingSyncEntry:
        """Queue a payload, replacing any previous entry."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO pending_sync (slot, payload, queued_at) VALUES (1, ?, ?)",
                (json.dumps(payload), ensure_utc(queued_at).isoformat()),
            )
        logger.debug("Queued payload for later upload (%s)", queued_at.isoformat())
        return PendingSyncEntry(payload=payload, queued_at=queued_at)

    def clear_pending(self) -> None:
        """Drop the queued entry."""
        with self._lock:
            self._conn.execute("DELETE FROM pending_sync")

    # === Sync state ===

    def get_state(self, key: str) -> str | None:
        """Get a sync state value."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT value FROM sync_state WHERE key = ?",
                (key,),
            )
            row = cursor.fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str) -> None:
        """Set a sync state value."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)",
                (key, value),
            )

    def get_last_sync(self) -> datetime | None:
        """Get the last lastSync acknowledged by the server."""
        return parse_timestamp(self.get_state("last_sync"))

    def set_last_sync(self, last_sync: datetime) -> None:
        """Remember the last lastSync acknowledged by the server."""
        self.set_state("last_sync", ensure_utc(last_sync).isoformat())
