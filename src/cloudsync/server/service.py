"""Server-side sync protocol.

SyncService implements the four logical operations of the protocol:

- pull: return the stored payload and its lastSync
- accept: conditional push, rejected with a conflict when the cloud copy is
  newer than the pushing device's localTimestamp
- force: unconditional push, the terminal step of a user-directed conflict
  resolution
- status: cheap freshness probe that never reads the payload

Conflict detection compares the stored lastSync against the client-reported
localTimestamp. The comparison is strict so a device pushing data it has
just pulled (equal timestamps) is accepted. A push that carries no
localTimestamp is not checked at all.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from cloudsync.core.timestamps import Clock, ensure_utc, utc_now
from cloudsync.server.repository import (
    RecordView,
    StaleRecordError,
    SyncRecord,
    SyncRecordRepository,
)

logger = logging.getLogger(__name__)

# Largest accepted JSON-encoded payload (2 MiB)
DEFAULT_MAX_PAYLOAD_BYTES = 2 * 1024 * 1024

# Conditional write attempts before giving up under contention
MAX_WRITE_ATTEMPTS = 5


class ValidationError(Exception):
    """Raised when a push carries no payload."""


class PayloadTooLargeError(ValidationError):
    """Raised when a payload exceeds the configured size limit."""


class SyncConflictError(Exception):
    """Raised when the stored record is newer than the pushing device's copy."""

    def __init__(self, record: SyncRecord) -> None:
        super().__init__(
            f"Conflict detected: cloud copy from {record.last_sync.isoformat()} is newer"
        )
        self.record = record


@dataclass
class PullResult:
    """Payload and lastSync returned by a pull (both None on first use)."""

    data: Any
    last_sync: datetime | None


@dataclass
class StatusResult:
    """Result of the status probe."""

    configured: bool
    last_sync: datetime | None
    user: str


class SyncService:
    """Protocol handler owning conflict detection and forced overwrite."""

    def __init__(
        self,
        repository: SyncRecordRepository,
        clock: Clock = utc_now,
        max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
    ) -> None:
        """Initialize the service.

        Args:
            repository: Record repository backed by the blob store.
            clock: Source of server time for lastSync assignment.
            max_payload_bytes: Largest accepted JSON-encoded payload.
        """
        self._repository = repository
        self._clock = clock
        self._max_payload_bytes = max_payload_bytes

    def pull(self, user_id: str) -> PullResult:
        """Return the stored payload of a user."""
        record = self._repository.get(user_id)
        if record is None:
            return PullResult(data=None, last_sync=None)
        return PullResult(data=record.payload, last_sync=record.last_sync)

    def accept(
        self,
        user_id: str,
        app_data: Any,
        local_timestamp: datetime | None,
    ) -> datetime:
        """Conditionally store a payload.

        Args:
            user_id: Authenticated user.
            app_data: Opaque payload. Missing or empty scalars are rejected.
            local_timestamp: When the device believes its copy was last
                modified. None skips the conflict check.

        Returns:
            The new lastSync.

        Raises:
            ValidationError: If app_data is missing or too large.
            SyncConflictError: If the stored record is strictly newer.
            StaleRecordError: If contention outlasted all write attempts.
        """
        self._validate(app_data)
        local = ensure_utc(local_timestamp) if local_timestamp else None

        def check(view: RecordView) -> None:
            if local is None:
                return
            if view.record is not None and view.record.last_sync > local:
                logger.info(
                    "Conflict for user %s: cloud %s > local %s",
                    user_id,
                    view.record.last_sync.isoformat(),
                    local.isoformat(),
                )
                raise SyncConflictError(view.record)

        record = self._write(user_id, app_data, check)
        logger.info("Accepted push for user %s at %s", user_id, record.last_sync.isoformat())
        return record.last_sync

    def force(self, user_id: str, app_data: Any) -> datetime:
        """Unconditionally store a payload, bypassing conflict detection.

        Raises:
            ValidationError: If app_data is missing or too large.
            StaleRecordError: If contention outlasted all write attempts.
        """
        self._validate(app_data)
        record = self._write(user_id, app_data, None)
        logger.info("Forced push for user %s at %s", user_id, record.last_sync.isoformat())
        return record.last_sync

    def status(self, user_id: str) -> StatusResult:
        """Report configuration and freshness without reading the payload."""
        return StatusResult(
            configured=True,
            last_sync=self._repository.get_last_sync(user_id),
            user=user_id,
        )

    def _validate(self, app_data: Any) -> None:
        # Empty objects and arrays are data; null, "", 0 and false are not
        if app_data is None or (not app_data and not isinstance(app_data, (dict, list))):
            raise ValidationError("No data provided")
        size = len(json.dumps(app_data, separators=(",", ":")).encode("utf-8"))
        if size > self._max_payload_bytes:
            raise PayloadTooLargeError(
                f"Payload of {size} bytes exceeds limit of {self._max_payload_bytes} bytes"
            )

    def _next_last_sync(self, view: RecordView) -> datetime:
        """Server time, never earlier than what is already stored."""
        now = ensure_utc(self._clock())
        floor = [t for t in (view.head, view.record and view.record.last_sync) if t]
        return max([now, *floor])

    def _write(
        self,
        user_id: str,
        app_data: Any,
        check: Callable[[RecordView], None] | None,
    ) -> SyncRecord:
        """Read, optionally check, then compare-and-swap; retry on lost races."""
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            view = self._repository.read(user_id)
            if check is not None:
                check(view)
            try:
                return self._repository.compare_and_swap(
                    user_id,
                    view.head,
                    app_data,
                    self._next_last_sync(view),
                )
            except StaleRecordError:
                logger.warning(
                    "Concurrent write for user %s (attempt %d/%d)",
                    user_id,
                    attempt,
                    MAX_WRITE_ATTEMPTS,
                )
        raise StaleRecordError(
            f"Gave up writing record for {user_id} after {MAX_WRITE_ATTEMPTS} attempts"
        )
