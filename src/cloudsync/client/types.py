"""Result types returned by SyncClient.

``SyncClient.upload`` never raises for protocol outcomes. It returns one of
the tagged results below and lets the caller decide how to present them:

    Accepted | Conflict | Queued | Failed | Skipped
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from cloudsync.client.state import PendingSyncEntry
from cloudsync.core.types import SyncStatus


class FailureKind(str, Enum):
    """Why an upload failed.

    AUTH and VALIDATION are never queued. UNAVAILABLE and TRANSIENT keep
    the payload queued for the next reconnect or manual sync.
    """

    AUTH = "auth"
    VALIDATION = "validation"
    UNAVAILABLE = "unavailable"
    TRANSIENT = "transient"

    @property
    def retryable(self) -> bool:
        """Whether the payload is kept for a later retry."""
        return self in (FailureKind.UNAVAILABLE, FailureKind.TRANSIENT)


@dataclass
class ConflictSnapshot:
    """Both sides of an unresolved conflict.

    Lives only while the client status is ``conflict``.
    """

    cloud_payload: Any
    cloud_timestamp: datetime | None
    local_payload: Any


@dataclass(frozen=True)
class Accepted:
    """The server stored the payload."""

    last_sync: datetime


@dataclass(frozen=True)
class Conflict:
    """The cloud copy is newer; user-directed resolution is required."""

    snapshot: ConflictSnapshot


@dataclass(frozen=True)
class Queued:
    """The device is offline; the payload waits in the pending slot."""

    entry: PendingSyncEntry


@dataclass(frozen=True)
class Failed:
    """The upload failed.

    Attributes:
        kind: Failure category.
        message: Human-readable reason.
        queued: Whether the payload was kept for retry.
    """

    kind: FailureKind
    message: str
    queued: bool = False


@dataclass(frozen=True)
class Skipped:
    """Nothing was attempted (no credential)."""

    reason: str


UploadResult = Accepted | Conflict | Queued | Failed | Skipped


@dataclass(frozen=True)
class UpdateCheck:
    """Outcome of the session-start freshness check.

    ``cloud_newer`` means the caller should offer to adopt ``data``.
    """

    cloud_newer: bool
    data: Any = None
    last_sync: datetime | None = None


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of resolve_conflict.

    For the "cloud" choice, ``adopted_payload`` is the state the caller
    must now use locally.
    """

    choice: str
    status: SyncStatus
    adopted_payload: Any = None
    last_sync: datetime | None = None
    failure: Failed | None = None
