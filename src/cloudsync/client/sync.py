"""Client-side sync orchestrator.

SyncClient keeps this device's copy of the application state in step with
the cloud copy. It owns:

- the debounced auto-sync timer (one live timer per client)
- the durable single-slot offline queue
- the current SyncStatus
- the conflict snapshot while a conflict waits for the user

State machine::

    offline <-> (connectivity) <-> syncing
    syncing -> synced | conflict | error
    error -> syncing            (queue flush or manual sync)
    conflict -> synced          (resolve_conflict, either branch)

All collaborators are injected (HTTP client, local state, clock, timer
factory) so several clients can run side by side in one process.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any, Protocol

from cloudsync.client.api import (
    APIError,
    AuthenticationError,
    ConflictError,
    HTTPClient,
    PullResult,
    ServiceUnavailableError,
    ValidationError,
)
from cloudsync.client.state import LocalSyncState
from cloudsync.client.types import (
    Accepted,
    Conflict,
    ConflictSnapshot,
    Failed,
    FailureKind,
    Queued,
    ResolutionResult,
    Skipped,
    UpdateCheck,
    UploadResult,
)
from cloudsync.core.timestamps import EPOCH, Clock, utc_now
from cloudsync.core.types import SyncStatus

logger = logging.getLogger(__name__)

# Quiet window before an auto-sync upload fires
DEFAULT_DEBOUNCE_SECONDS = 5.0

RESOLVE_CLOUD = "cloud"
RESOLVE_LOCAL = "local"


class TimerHandle(Protocol):
    """Cancelable scheduled call."""

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def start_thread_timer(delay: float, callback: Callable[[], None]) -> TimerHandle:
    """Default timer factory backed by threading.Timer."""
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


class SyncClient:
    """Orchestrates uploads, downloads, offline queueing and conflicts."""

    def __init__(
        self,
        http: HTTPClient,
        state: LocalSyncState,
        *,
        clock: Clock = utc_now,
        timer_factory: TimerFactory = start_thread_timer,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        online: bool = True,
        auto_sync_enabled: bool = True,
        offline_queue: bool = True,
        on_status_change: Callable[[SyncStatus], None] | None = None,
    ) -> None:
        """Initialize the sync client.

        Args:
            http: Transport to the sync server.
            state: Durable local state (pending entry, last lastSync).
            clock: Source of local time for localTimestamp and queuedAt.
            timer_factory: Schedules the debounced upload.
            debounce_seconds: Quiet window for auto_sync.
            online: Initial connectivity.
            auto_sync_enabled: When False, auto_sync does nothing.
            offline_queue: When False, failed or offline uploads are dropped.
            on_status_change: Called with each new status.
        """
        self._http = http
        self._state = state
        self._clock = clock
        self._timer_factory = timer_factory
        self._debounce_seconds = debounce_seconds
        self._auto_sync_enabled = auto_sync_enabled
        self._offline_queue = offline_queue
        self._on_status_change = on_status_change

        # Guards status, timer, conflict and flags
        self._lock = threading.RLock()
        # Serializes network calls: no two requests are ever in flight
        self._io_lock = threading.Lock()

        self._online = online
        self._status = SyncStatus.SYNCED if online else SyncStatus.OFFLINE
        self._conflict: ConflictSnapshot | None = None
        self._credential_rejected = False
        self._timer: TimerHandle | None = None
        self._timer_generation = 0
        self._last_sync: datetime | None = state.get_last_sync()

    # === Properties ===

    @property
    def status(self) -> SyncStatus:
        """Current sync status."""
        return self._status

    @property
    def last_sync(self) -> datetime | None:
        """Last lastSync acknowledged by the server."""
        return self._last_sync

    @property
    def state(self) -> LocalSyncState:
        """Durable local state backing this client."""
        return self._state

    @property
    def conflict(self) -> ConflictSnapshot | None:
        """Unresolved conflict, if any."""
        return self._conflict

    @property
    def is_online(self) -> bool:
        """Last known connectivity."""
        return self._online

    @property
    def is_authenticated(self) -> bool:
        """Whether a credential is present and was not rejected."""
        return bool(self._http.token) and not self._credential_rejected

    @property
    def has_scheduled_sync(self) -> bool:
        """Whether an auto-sync upload is waiting for its quiet window."""
        return self._timer is not None

    # === Lifecycle ===

    def start(self, local_modified: datetime | None = None) -> UpdateCheck | None:
        """Run the session-start checks.

        Pulls once to detect a newer cloud copy, then flushes anything
        queued by a previous session.

        Args:
            local_modified: When the local copy was last modified.

        Returns:
            The freshness check, or None when offline or logged out.
        """
        if not (self._online and self.is_authenticated):
            return None
        check = self.check_for_updates(local_modified)
        self.process_pending_sync()
        return check

    def close(self) -> None:
        """Cancel any scheduled auto-sync."""
        self.cancel_auto_sync()

    def set_credentials(self, token: str) -> None:
        """Install a fresh credential after re-authentication."""
        with self._lock:
            self._http.set_token(token)
            self._credential_rejected = False

    def set_online(self, online: bool) -> None:
        """Record a connectivity transition.

        Going online after being offline flushes the pending entry; that is
        the only automatic retry trigger.
        """
        with self._lock:
            was_online = self._online
            self._online = online
            if not online:
                if self._status is not SyncStatus.CONFLICT:
                    self._set_status(SyncStatus.OFFLINE)
                return
            if was_online:
                return
            logger.info("Connectivity restored")
            if self._status is SyncStatus.OFFLINE:
                self._set_status(SyncStatus.SYNCED)

        self.process_pending_sync()

    # === Upload ===

    def upload(self, payload: Any, modified_at: datetime | None = None) -> UploadResult:
        """Push a payload to the cloud.

        Args:
            payload: Opaque application state.
            modified_at: When the local copy was last modified (now if omitted).
                Orders the payload against the offline queue; the push itself
                is stamped with the current time.

        Returns:
            Tagged outcome. Conflicts and failures are results, not exceptions.
        """
        if not self.is_authenticated:
            logger.debug("Not logged in, skipping upload")
            return Skipped("Not authenticated")

        with self._io_lock:
            timestamp = modified_at or self._clock()

            with self._lock:
                if self._conflict is not None:
                    # Keep the newest local state for a "local" resolution
                    self._conflict.local_payload = payload
                    self._supersede_pending(timestamp)
                    logger.info("Upload held back: unresolved conflict")
                    return Conflict(self._conflict)

                if payload is None:
                    return Failed(FailureKind.VALIDATION, "No data provided")

                if not self._online:
                    self._set_status(SyncStatus.OFFLINE)
                    if not self._offline_queue:
                        return Failed(FailureKind.TRANSIENT, "Offline", queued=False)
                    entry = self._state.set_pending(payload, timestamp)
                    logger.info("Offline, queued payload for later")
                    return Queued(entry)

                self._set_status(SyncStatus.SYNCING)

            try:
                last_sync = self._http.push(payload, self._clock())
            except ConflictError as e:
                return self._enter_conflict(e, payload, timestamp)
            except APIError as e:
                return self._fail(e, payload, timestamp)

            with self._lock:
                self._record_last_sync(last_sync)
                self._supersede_pending(timestamp)
                self._set_status(SyncStatus.SYNCED)
            logger.info("Data uploaded to cloud (lastSync %s)", last_sync.isoformat())
            return Accepted(last_sync)

    def manual_sync(self, payload: Any) -> UploadResult:
        """Explicit user-triggered upload (also the retry path out of error)."""
        self.cancel_auto_sync()
        return self.upload(payload)

    # === Auto-sync (debounce) ===

    def auto_sync(self, payload: Any) -> None:
        """Schedule an upload after the quiet window.

        Each call replaces the scheduled upload; only the last payload of a
        burst is sent.
        """
        if not self._auto_sync_enabled or not self.is_authenticated:
            return

        modified_at = self._clock()
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer_generation += 1
            generation = self._timer_generation
            self._timer = self._timer_factory(
                self._debounce_seconds,
                lambda: self._fire_auto_sync(generation, payload, modified_at),
            )

    def cancel_auto_sync(self) -> None:
        """Drop the scheduled upload, if any."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._timer_generation += 1

    def _fire_auto_sync(self, generation: int, payload: Any, modified_at: datetime) -> None:
        with self._lock:
            if generation != self._timer_generation:
                return
            self._timer = None
        self.upload(payload, modified_at=modified_at)

    # === Offline queue ===

    def process_pending_sync(self) -> UploadResult | None:
        """Upload the queued entry, if any.

        The entry is removed only once the upload reaches a terminal
        outcome (accepted or conflict); a failed retry leaves it queued.

        Returns:
            The upload outcome, or None when nothing was queued.
        """
        entry = self._state.get_pending()
        if entry is None:
            return None
        logger.info("Processing pending sync queued at %s", entry.queued_at.isoformat())
        return self.upload(entry.payload, modified_at=entry.queued_at)

    # === Download ===

    def download(self) -> PullResult | None:
        """Fetch the cloud copy.

        Returns:
            PullResult (fields None on first use), or None when logged out
            or when the pull failed.
        """
        if not self.is_authenticated:
            return None

        with self._io_lock:
            with self._lock:
                previous = self._status
                if previous is not SyncStatus.CONFLICT:
                    self._set_status(SyncStatus.SYNCING)
            try:
                result = self._http.pull()
            except APIError as e:
                logger.error("Sync download error: %s", e)
                with self._lock:
                    if isinstance(e, AuthenticationError):
                        self._credential_rejected = True
                    if self._status is not SyncStatus.CONFLICT:
                        self._set_status(SyncStatus.ERROR)
                return None

            with self._lock:
                if result.last_sync is not None:
                    self._record_last_sync(result.last_sync)
                if self._status is SyncStatus.SYNCING:
                    pending = self._state.get_pending() is not None
                    keep = pending or not self._online
                    self._set_status(previous if keep else SyncStatus.SYNCED)
            return result

    def check_for_updates(self, local_modified: datetime | None) -> UpdateCheck:
        """Detect whether the cloud copy is newer than the local one.

        Args:
            local_modified: When the local copy was last modified (None
                meaning never).

        Returns:
            UpdateCheck; when ``cloud_newer`` is set the caller should offer
            to adopt ``data``.
        """
        result = self.download()
        if result is None or result.data is None or result.last_sync is None:
            return UpdateCheck(cloud_newer=False)
        local = local_modified or EPOCH
        return UpdateCheck(
            cloud_newer=result.last_sync > local,
            data=result.data,
            last_sync=result.last_sync,
        )

    # === Conflict resolution ===

    def resolve_conflict(self, choice: str) -> ResolutionResult:
        """Resolve the current conflict.

        Args:
            choice: "cloud" adopts the cloud copy; "local" force-pushes the
                local copy, ignoring the cloud timestamp.

        Raises:
            ValueError: If choice is unknown or there is no conflict.
        """
        if choice not in (RESOLVE_CLOUD, RESOLVE_LOCAL):
            raise ValueError(f"Unknown conflict resolution: {choice!r}")

        with self._io_lock:
            with self._lock:
                snapshot = self._conflict
                if snapshot is None:
                    raise ValueError("No conflict to resolve")
                self._conflict = None

                if choice == RESOLVE_CLOUD:
                    self._state.clear_pending()
                    if snapshot.cloud_timestamp is not None:
                        self._record_last_sync(snapshot.cloud_timestamp)
                    self._set_status(SyncStatus.SYNCED)
                    logger.info("Conflict resolved: using cloud copy")
                    return ResolutionResult(
                        choice=choice,
                        status=SyncStatus.SYNCED,
                        adopted_payload=snapshot.cloud_payload,
                        last_sync=snapshot.cloud_timestamp,
                    )

                self._set_status(SyncStatus.SYNCING)

            timestamp = self._clock()
            try:
                last_sync = self._http.force_push(snapshot.local_payload)
            except APIError as e:
                failure = self._fail(e, snapshot.local_payload, timestamp)
                return ResolutionResult(choice=choice, status=self._status, failure=failure)

            with self._lock:
                self._record_last_sync(last_sync)
                self._supersede_pending(timestamp)
                self._set_status(SyncStatus.SYNCED)
            logger.info("Conflict resolved: local copy synced to cloud")
            return ResolutionResult(choice=choice, status=SyncStatus.SYNCED, last_sync=last_sync)

    # === Internals ===

    def _set_status(self, status: SyncStatus) -> None:
        if status is self._status:
            return
        logger.debug("Sync status %s -> %s", self._status.value, status.value)
        self._status = status
        if self._on_status_change is not None:
            self._on_status_change(status)

    def _record_last_sync(self, last_sync: datetime) -> None:
        self._last_sync = last_sync
        self._state.set_last_sync(last_sync)

    def _supersede_pending(self, timestamp: datetime) -> None:
        """Drop a queued entry that is not newer than what just went out."""
        entry = self._state.get_pending()
        if entry is not None and entry.queued_at <= timestamp:
            self._state.clear_pending()

    def _enter_conflict(
        self,
        error: ConflictError,
        payload: Any,
        timestamp: datetime,
    ) -> Conflict:
        with self._lock:
            self._conflict = ConflictSnapshot(
                cloud_payload=error.cloud_data,
                cloud_timestamp=error.cloud_timestamp,
                local_payload=payload,
            )
            self._supersede_pending(timestamp)
            self._set_status(SyncStatus.CONFLICT)
            logger.warning("Sync conflict: cloud copy is newer")
            return Conflict(self._conflict)

    def _fail(self, error: APIError, payload: Any, timestamp: datetime) -> Failed:
        """Classify a failed request, queueing the payload when retryable."""
        if isinstance(error, AuthenticationError):
            kind = FailureKind.AUTH
        elif isinstance(error, ValidationError):
            kind = FailureKind.VALIDATION
        elif isinstance(error, ServiceUnavailableError):
            kind = FailureKind.UNAVAILABLE
        else:
            kind = FailureKind.TRANSIENT

        with self._lock:
            if kind is FailureKind.AUTH:
                self._credential_rejected = True
            queued = kind.retryable and self._offline_queue
            if queued:
                self._state.set_pending(payload, timestamp)
            self._set_status(SyncStatus.ERROR)

        logger.error("Sync error (%s): %s%s", kind.value, error, " - queued" if queued else "")
        return Failed(kind, str(error), queued=queued)
