"""Sync record repository.

Wraps a BlobStore to read and write one structured record per user::

    users/<user_id>/data.json -> {"appData": ..., "lastSync": "<iso>", "userId": "<id>"}

Every write goes through the sync head in the database: the head is swapped
first and the blob is written while the head row is still locked. Two writers
for the same user therefore never interleave, and a writer that read a stale
head is rejected instead of clobbering a newer record.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from cloudsync.core.timestamps import format_timestamp, parse_timestamp
from cloudsync.server.database import Database, StaleHeadError
from cloudsync.server.storage import BlobNotFoundError, BlobStore

logger = logging.getLogger(__name__)


class StaleRecordError(Exception):
    """Raised when a conditional write lost the race to another writer."""


class RecordCorruptError(Exception):
    """Raised when a stored record cannot be decoded."""


@dataclass
class SyncRecord:
    """Server-persisted sync record.

    Attributes:
        user_id: Owner of the record.
        payload: Opaque application state.
        last_sync: Server-assigned instant of the accepted write.
    """

    user_id: str
    payload: Any
    last_sync: datetime

    def to_bytes(self) -> bytes:
        """Encode to the stored JSON document."""
        document = {
            "appData": self.payload,
            "lastSync": format_timestamp(self.last_sync),
            "userId": self.user_id,
        }
        return json.dumps(document, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_bytes(cls, user_id: str, data: bytes) -> SyncRecord:
        """Decode a stored JSON document."""
        try:
            document = json.loads(data)
            last_sync = parse_timestamp(document["lastSync"])
        except (ValueError, KeyError, TypeError) as e:
            raise RecordCorruptError(f"Invalid sync record for {user_id}") from e
        if last_sync is None:
            raise RecordCorruptError(f"Sync record for {user_id} has no lastSync")
        return cls(user_id=user_id, payload=document.get("appData"), last_sync=last_sync)


@dataclass
class RecordView:
    """A record read together with the head value writes must compare against."""

    head: datetime | None
    record: SyncRecord | None


def record_key(user_id: str) -> str:
    """Blob key holding the record of a user."""
    return f"users/{user_id}/data.json"


class SyncRecordRepository:
    """Reads and writes SyncRecords through the blob store and sync heads."""

    def __init__(self, db: Database, storage: BlobStore) -> None:
        self._db = db
        self._storage = storage

    def get(self, user_id: str) -> SyncRecord | None:
        """Read the record of a user.

        Returns:
            The record, or None if the user has never synced.

        Raises:
            RecordCorruptError: If the stored blob is unreadable.
        """
        try:
            data = self._storage.get(record_key(user_id))
        except BlobNotFoundError:
            return None
        return SyncRecord.from_bytes(user_id, data)

    def read(self, user_id: str) -> RecordView:
        """Read the head, then the record.

        The head is read first so that a write committed in between shows
        up as a newer record and a moved head, never the other way round.
        """
        head = self._db.get_sync_head(user_id)
        return RecordView(head=head, record=self.get(user_id))

    def get_last_sync(self, user_id: str) -> datetime | None:
        """Return the last accepted instant without touching the blob."""
        return self._db.get_sync_head(user_id)

    def compare_and_swap(
        self,
        user_id: str,
        expected_head: datetime | None,
        payload: Any,
        last_sync: datetime,
    ) -> SyncRecord:
        """Write a record only if the head still holds ``expected_head``.

        Raises:
            StaleRecordError: If another write moved the head first.
        """
        record = SyncRecord(user_id=user_id, payload=payload, last_sync=last_sync)
        data = record.to_bytes()
        try:
            self._db.swap_sync_head(
                user_id,
                expected_head,
                last_sync,
                on_swapped=lambda: self._storage.put(record_key(user_id), data),
            )
        except StaleHeadError as e:
            raise StaleRecordError(str(e)) from e
        logger.debug("Stored record for user %s (%d bytes)", user_id, len(data))
        return record

    def delete(self, user_id: str) -> bool:
        """Remove the record and head of a user.

        Returns:
            True if anything was removed.
        """
        removed_blob = self._storage.delete(record_key(user_id))
        removed_head = self._db.delete_sync_head(user_id)
        return removed_blob or removed_head
