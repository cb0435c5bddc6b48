"""Tests for the SyncClient orchestrator.

The HTTP transport and the timer are replaced by in-memory fakes so every
transition can be driven deterministically.
"""

import threading
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from cloudsync.client.api import (
    AuthenticationError,
    ConflictError,
    PullResult,
    ServiceUnavailableError,
    TransientError,
    ValidationError,
)
from cloudsync.client.state import LocalSyncState
from cloudsync.client.sync import RESOLVE_CLOUD, RESOLVE_LOCAL, SyncClient
from cloudsync.client.types import (
    Accepted,
    Conflict,
    Failed,
    FailureKind,
    Queued,
    Skipped,
)
from cloudsync.core.types import SyncStatus

T0 = datetime(2025, 1, 1, 10, 0, 0, tzinfo=UTC)
T_CLOUD = datetime(2025, 1, 1, 11, 0, 0, tzinfo=UTC)
T_SERVER = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)


class FakeHTTP:
    """In-memory stand-in for HTTPClient."""

    def __init__(self, token: str = "tok") -> None:
        self.token = token
        self.pushes: list[tuple[Any, datetime]] = []
        self.forces: list[Any] = []
        self.pulls = 0
        self.push_errors: list[Exception] = []
        self.force_errors: list[Exception] = []
        self.pull_error: Exception | None = None
        self.pull_result = PullResult(data=None, last_sync=None)
        self.server_time = T_SERVER

    def set_token(self, token: str) -> None:
        self.token = token

    def push(self, app_data: Any, local_timestamp: datetime) -> datetime:
        self.pushes.append((app_data, local_timestamp))
        if self.push_errors:
            raise self.push_errors.pop(0)
        return self.server_time

    def force_push(self, app_data: Any) -> datetime:
        self.forces.append(app_data)
        if self.force_errors:
            raise self.force_errors.pop(0)
        return self.server_time

    def pull(self) -> PullResult:
        self.pulls += 1
        if self.pull_error is not None:
            raise self.pull_error
        return self.pull_result


class FakeClock:
    """Settable clock."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeTimer:
    """Timer that only fires when the test says so."""

    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.callback()


class FakeTimers:
    """Timer factory recording every scheduled timer."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def live(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]


@pytest.fixture
def http() -> FakeHTTP:
    """Fake transport with a credential."""
    return FakeHTTP()


@pytest.fixture
def state(tmp_path: Path) -> Generator[LocalSyncState, None, None]:
    """Durable client state."""
    s = LocalSyncState(tmp_path / "state.db")
    yield s
    s.close()


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting at T0."""
    return FakeClock(T0)


@pytest.fixture
def timers() -> FakeTimers:
    """Manual timer factory."""
    return FakeTimers()


@pytest.fixture
def make_client(
    http: FakeHTTP, state: LocalSyncState, clock: FakeClock, timers: FakeTimers
) -> Callable[..., SyncClient]:
    """Build SyncClients wired to the fakes."""

    def _make(**kwargs: Any) -> SyncClient:
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("timer_factory", timers)
        return SyncClient(http, state, **kwargs)  # type: ignore[arg-type]

    return _make


@pytest.fixture
def client(make_client: Callable[..., SyncClient]) -> SyncClient:
    """Online client."""
    return make_client()


def conflict_error(data: Any = "cloud") -> ConflictError:
    return ConflictError(data, T_CLOUD)


class TestInitialState:
    """Tests for construction."""

    def test_online_starts_synced(self, client: SyncClient) -> None:
        """An online client starts out synced."""
        assert client.status is SyncStatus.SYNCED
        assert client.is_online is True

    def test_offline_starts_offline(self, make_client: Callable[..., SyncClient]) -> None:
        """An offline client starts out offline."""
        assert make_client(online=False).status is SyncStatus.OFFLINE

    def test_restores_last_sync(
        self, state: LocalSyncState, make_client: Callable[..., SyncClient]
    ) -> None:
        """lastSync from a previous session is loaded."""
        state.set_last_sync(T_CLOUD)
        assert make_client().last_sync == T_CLOUD

    def test_not_authenticated_without_token(self, make_client: Callable[..., SyncClient], http: FakeHTTP) -> None:
        """No credential means not authenticated."""
        http.token = ""
        assert make_client().is_authenticated is False


class TestUpload:
    """Tests for upload outcomes."""

    def test_accepted(self, client: SyncClient, http: FakeHTTP, state: LocalSyncState) -> None:
        """An accepted push records lastSync and ends synced."""
        result = client.upload({"v": 1})

        assert result == Accepted(T_SERVER)
        assert client.status is SyncStatus.SYNCED
        assert client.last_sync == T_SERVER
        assert state.get_last_sync() == T_SERVER
        assert http.pushes == [({"v": 1}, T0)]

    def test_local_timestamp_is_send_time(
        self, client: SyncClient, http: FakeHTTP, clock: FakeClock
    ) -> None:
        """The push is stamped when it goes out, not with the edit time."""
        clock.now = T_CLOUD

        client.upload(1, modified_at=T0)

        assert http.pushes == [(1, T_CLOUD)]

    def test_edit_during_upload_is_not_a_conflict(
        self, state: LocalSyncState, clock: FakeClock, timers: FakeTimers
    ) -> None:
        """An edit made while the previous upload is in flight never conflicts with it."""
        client: SyncClient

        class StrictHTTP(FakeHTTP):
            """Applies the server's strict lastSync > localTimestamp check."""

            def __init__(self) -> None:
                super().__init__()
                self.stored: datetime | None = None

            def push(self, app_data: Any, local_timestamp: datetime) -> datetime:
                self.pushes.append((app_data, local_timestamp))
                if self.stored is not None and self.stored > local_timestamp:
                    raise ConflictError(None, self.stored)
                if len(self.pushes) == 1:
                    # The user edits again before the server answers
                    client.auto_sync({"v": 2})
                self.stored = clock.now + timedelta(milliseconds=400)
                return self.stored

        http = StrictHTTP()
        client = SyncClient(http, state, clock=clock, timer_factory=timers)  # type: ignore[arg-type]

        client.auto_sync({"v": 1})
        clock.now = T0 + timedelta(seconds=5)
        timers.live[0].fire()
        clock.now = T0 + timedelta(seconds=10)
        timers.timers[-1].fire()

        assert [p[0] for p in http.pushes] == [{"v": 1}, {"v": 2}]
        assert client.status is SyncStatus.SYNCED
        assert client.conflict is None

    def test_skipped_without_credential(self, client: SyncClient, http: FakeHTTP) -> None:
        """A logged-out client sends nothing."""
        http.token = ""

        result = client.upload({"v": 1})

        assert isinstance(result, Skipped)
        assert http.pushes == []

    def test_missing_payload_not_sent(self, client: SyncClient, http: FakeHTTP) -> None:
        """A None payload is rejected locally."""
        result = client.upload(None)

        assert result == Failed(FailureKind.VALIDATION, "No data provided")
        assert http.pushes == []

    def test_status_transitions(self, make_client: Callable[..., SyncClient]) -> None:
        """A successful upload goes syncing then synced."""
        seen: list[SyncStatus] = []
        client = make_client(on_status_change=seen.append)

        client.upload(1)

        assert seen == [SyncStatus.SYNCING, SyncStatus.SYNCED]

    def test_manual_sync_cancels_scheduled(
        self, client: SyncClient, http: FakeHTTP, timers: FakeTimers
    ) -> None:
        """A manual sync supersedes the pending debounce."""
        client.auto_sync("draft")

        result = client.manual_sync("final")

        assert isinstance(result, Accepted)
        assert timers.timers[0].cancelled is True
        timers.timers[0].fire()
        assert http.pushes == [("final", T0)]


class TestFailures:
    """Tests for failure classification and queueing."""

    def test_auth_failure_not_queued(
        self, client: SyncClient, http: FakeHTTP, state: LocalSyncState
    ) -> None:
        """A rejected credential is not retried and the payload is not queued."""
        http.push_errors = [AuthenticationError("Invalid or expired token", 401)]

        result = client.upload(1)

        assert isinstance(result, Failed)
        assert result.kind is FailureKind.AUTH
        assert result.queued is False
        assert state.get_pending() is None
        assert client.status is SyncStatus.ERROR
        assert client.is_authenticated is False

    def test_auth_failure_blocks_until_new_credentials(
        self, client: SyncClient, http: FakeHTTP
    ) -> None:
        """After a 401 uploads are skipped until set_credentials."""
        http.push_errors = [AuthenticationError("expired", 401)]
        client.upload(1)

        assert isinstance(client.upload(2), Skipped)
        assert len(http.pushes) == 1

        client.set_credentials("fresh")

        assert client.is_authenticated is True
        assert http.token == "fresh"
        assert isinstance(client.upload(3), Accepted)

    def test_validation_failure_not_queued(
        self, client: SyncClient, http: FakeHTTP, state: LocalSyncState
    ) -> None:
        """Malformed requests are not retried."""
        http.push_errors = [ValidationError("Payload too large", 413)]

        result = client.upload(1)

        assert isinstance(result, Failed)
        assert result.kind is FailureKind.VALIDATION
        assert result.queued is False
        assert state.get_pending() is None

    @pytest.mark.parametrize(
        ("error", "kind"),
        [
            (ServiceUnavailableError("Cloud sync not configured", 503), FailureKind.UNAVAILABLE),
            (TransientError("Request timed out"), FailureKind.TRANSIENT),
            (TransientError("Internal error", 500), FailureKind.TRANSIENT),
        ],
    )
    def test_retryable_failures_queued(
        self,
        client: SyncClient,
        http: FakeHTTP,
        state: LocalSyncState,
        error: Exception,
        kind: FailureKind,
    ) -> None:
        """Unavailable and transient failures keep the payload for later."""
        http.push_errors = [error]

        result = client.upload({"v": 1})

        assert isinstance(result, Failed)
        assert result.kind is kind
        assert result.queued is True
        assert client.status is SyncStatus.ERROR
        entry = state.get_pending()
        assert entry is not None
        assert entry.payload == {"v": 1}
        assert entry.queued_at == T0

    def test_retryable_failure_dropped_without_queue(
        self,
        make_client: Callable[..., SyncClient],
        http: FakeHTTP,
        state: LocalSyncState,
    ) -> None:
        """With the offline queue disabled nothing is kept."""
        client = make_client(offline_queue=False)
        http.push_errors = [TransientError("boom")]

        result = client.upload(1)

        assert isinstance(result, Failed)
        assert result.queued is False
        assert state.get_pending() is None

    def test_manual_sync_recovers_from_error(
        self, client: SyncClient, http: FakeHTTP, state: LocalSyncState, clock: FakeClock
    ) -> None:
        """The manual retry path leaves error and clears the queued copy."""
        http.push_errors = [TransientError("boom")]
        client.upload({"v": 1})

        clock.now = T0 + timedelta(seconds=10)
        result = client.manual_sync({"v": 2})

        assert isinstance(result, Accepted)
        assert client.status is SyncStatus.SYNCED
        assert state.get_pending() is None

    def test_failed_flush_keeps_entry(
        self, client: SyncClient, http: FakeHTTP, state: LocalSyncState
    ) -> None:
        """A pending entry survives a failed retry."""
        state.set_pending({"v": 1}, T0)
        http.push_errors = [TransientError("boom")]

        result = client.process_pending_sync()

        assert isinstance(result, Failed)
        entry = state.get_pending()
        assert entry is not None
        assert entry.payload == {"v": 1}


class TestOfflineQueue:
    """Tests for offline queueing and reconnect flush."""

    @pytest.fixture
    def offline(self, make_client: Callable[..., SyncClient]) -> SyncClient:
        """Offline client."""
        return make_client(online=False)

    def test_offline_upload_queued(
        self, offline: SyncClient, http: FakeHTTP, state: LocalSyncState
    ) -> None:
        """Uploads while offline are queued, not sent."""
        result = offline.upload({"v": 1})

        assert isinstance(result, Queued)
        assert result.entry.payload == {"v": 1}
        assert offline.status is SyncStatus.OFFLINE
        assert http.pushes == []
        assert state.get_pending() is not None

    def test_queue_keeps_only_latest(
        self, offline: SyncClient, state: LocalSyncState, clock: FakeClock
    ) -> None:
        """The queue holds one entry: the newest payload."""
        offline.upload({"v": 1})
        clock.now = T0 + timedelta(seconds=5)
        offline.upload({"v": 2})

        entry = state.get_pending()
        assert entry is not None
        assert entry.payload == {"v": 2}
        assert entry.queued_at == T0 + timedelta(seconds=5)

    def test_offline_without_queue(self, make_client: Callable[..., SyncClient], state: LocalSyncState) -> None:
        """Disabling the queue drops offline uploads."""
        client = make_client(online=False, offline_queue=False)

        result = client.upload(1)

        assert isinstance(result, Failed)
        assert result.queued is False
        assert state.get_pending() is None

    def test_reconnect_flushes_once(
        self,
        offline: SyncClient,
        http: FakeHTTP,
        state: LocalSyncState,
        clock: FakeClock,
    ) -> None:
        """Coming back online sends the latest queued payload exactly once."""
        offline.upload({"v": 1})
        clock.now = T0 + timedelta(seconds=5)
        offline.upload({"v": 2})

        offline.set_online(True)
        offline.set_online(True)

        assert http.pushes == [({"v": 2}, T0 + timedelta(seconds=5))]
        assert state.get_pending() is None
        assert offline.status is SyncStatus.SYNCED

    def test_flush_stamped_at_reconnect(
        self,
        offline: SyncClient,
        http: FakeHTTP,
        state: LocalSyncState,
        clock: FakeClock,
    ) -> None:
        """A payload queued hours ago is pushed with the reconnect time."""
        offline.upload({"v": 1})
        clock.now = T0 + timedelta(hours=3)

        offline.set_online(True)

        assert http.pushes == [({"v": 1}, T0 + timedelta(hours=3))]
        assert state.get_pending() is None

    def test_reconnect_with_empty_queue(self, offline: SyncClient, http: FakeHTTP) -> None:
        """Reconnecting with nothing queued sends nothing."""
        offline.set_online(True)

        assert http.pushes == []
        assert offline.status is SyncStatus.SYNCED

    def test_going_offline(self, client: SyncClient) -> None:
        """Losing connectivity moves the status to offline."""
        client.set_online(False)

        assert client.status is SyncStatus.OFFLINE
        assert client.is_online is False

    def test_queued_then_conflict_on_flush(
        self, offline: SyncClient, http: FakeHTTP, state: LocalSyncState
    ) -> None:
        """A flush that conflicts enters conflict and empties the queue."""
        offline.upload({"v": "offline edit"})
        http.push_errors = [conflict_error()]

        offline.set_online(True)

        assert offline.status is SyncStatus.CONFLICT
        assert state.get_pending() is None
        assert offline.conflict is not None
        assert offline.conflict.local_payload == {"v": "offline edit"}


class TestAutoSync:
    """Tests for the debounced auto-sync."""

    def test_schedules_one_timer(self, client: SyncClient, timers: FakeTimers) -> None:
        """auto_sync schedules an upload after the quiet window."""
        client.auto_sync(1)

        assert len(timers.live) == 1
        assert timers.live[0].delay == 5.0
        assert client.has_scheduled_sync is True

    def test_burst_coalesces(
        self, client: SyncClient, http: FakeHTTP, timers: FakeTimers, clock: FakeClock
    ) -> None:
        """A burst of changes sends only the last payload, stamped when it goes out."""
        client.auto_sync({"v": 1})
        clock.now = T0 + timedelta(seconds=1)
        client.auto_sync({"v": 2})
        clock.now = T0 + timedelta(seconds=2)
        client.auto_sync({"v": 3})

        assert len(timers.live) == 1
        clock.now = T0 + timedelta(seconds=30)
        timers.live[0].fire()

        assert http.pushes == [({"v": 3}, T0 + timedelta(seconds=30))]
        assert client.has_scheduled_sync is False

    def test_stale_timer_callback_ignored(
        self, client: SyncClient, http: FakeHTTP, timers: FakeTimers
    ) -> None:
        """A superseded timer that fires anyway sends nothing."""
        client.auto_sync({"v": 1})
        client.auto_sync({"v": 2})

        timers.timers[0].fire()

        assert http.pushes == []
        assert client.has_scheduled_sync is True

    def test_custom_debounce(self, make_client: Callable[..., SyncClient], timers: FakeTimers) -> None:
        """The quiet window is configurable."""
        make_client(debounce_seconds=0.5).auto_sync(1)

        assert timers.timers[0].delay == 0.5

    def test_disabled(self, make_client: Callable[..., SyncClient], timers: FakeTimers) -> None:
        """With auto-sync disabled nothing is scheduled."""
        make_client(auto_sync_enabled=False).auto_sync(1)

        assert timers.timers == []

    def test_not_authenticated(
        self, client: SyncClient, http: FakeHTTP, timers: FakeTimers
    ) -> None:
        """A logged-out client schedules nothing."""
        http.token = ""

        client.auto_sync(1)

        assert timers.timers == []

    def test_close_cancels(self, client: SyncClient, http: FakeHTTP, timers: FakeTimers) -> None:
        """close() drops the scheduled upload."""
        client.auto_sync(1)

        client.close()
        timers.timers[0].fire()

        assert timers.timers[0].cancelled is True
        assert http.pushes == []

    def test_offline_auto_sync_queues(
        self, make_client: Callable[..., SyncClient], timers: FakeTimers, state: LocalSyncState
    ) -> None:
        """A debounced upload firing while offline lands in the queue."""
        client = make_client(online=False)
        client.auto_sync({"v": 1})

        timers.live[0].fire()

        entry = state.get_pending()
        assert entry is not None
        assert entry.payload == {"v": 1}

    def test_thread_timer_default(
        self, http: FakeHTTP, state: LocalSyncState
    ) -> None:
        """The default factory fires through a real thread."""
        done = threading.Event()
        client = SyncClient(
            http,  # type: ignore[arg-type]
            state,
            debounce_seconds=0.01,
            on_status_change=lambda s: done.set() if s is SyncStatus.SYNCED else None,
        )
        client.auto_sync({"v": 1})

        assert done.wait(timeout=5.0)
        assert http.pushes[0][0] == {"v": 1}


class TestConflict:
    """Tests for conflict detection and resolution."""

    @pytest.fixture
    def conflicted(self, client: SyncClient, http: FakeHTTP) -> SyncClient:
        """Client sitting in conflict with a cloud copy from T_CLOUD."""
        http.push_errors = [conflict_error({"v": "cloud"})]
        client.upload({"v": "local"})
        return client

    def test_conflict_result(self, client: SyncClient, http: FakeHTTP) -> None:
        """A 409 becomes a Conflict result with both sides."""
        http.push_errors = [conflict_error({"v": "cloud"})]

        result = client.upload({"v": "local"})

        assert isinstance(result, Conflict)
        assert result.snapshot.cloud_payload == {"v": "cloud"}
        assert result.snapshot.cloud_timestamp == T_CLOUD
        assert result.snapshot.local_payload == {"v": "local"}
        assert client.status is SyncStatus.CONFLICT

    def test_conflict_does_not_touch_last_sync(self, conflicted: SyncClient) -> None:
        """A rejected push records no lastSync."""
        assert conflicted.last_sync is None

    def test_upload_during_conflict_held_back(
        self, conflicted: SyncClient, http: FakeHTTP
    ) -> None:
        """While in conflict nothing is sent, but the local copy is refreshed."""
        result = conflicted.upload({"v": "newer local"})

        assert isinstance(result, Conflict)
        assert len(http.pushes) == 1
        assert conflicted.conflict is not None
        assert conflicted.conflict.local_payload == {"v": "newer local"}

    def test_offline_keeps_conflict(self, conflicted: SyncClient) -> None:
        """Losing connectivity does not hide an unresolved conflict."""
        conflicted.set_online(False)

        assert conflicted.status is SyncStatus.CONFLICT

    def test_resolve_cloud(
        self, conflicted: SyncClient, http: FakeHTTP, state: LocalSyncState
    ) -> None:
        """Choosing the cloud copy adopts it without any upload."""
        resolution = conflicted.resolve_conflict(RESOLVE_CLOUD)

        assert resolution.status is SyncStatus.SYNCED
        assert resolution.adopted_payload == {"v": "cloud"}
        assert resolution.last_sync == T_CLOUD
        assert conflicted.status is SyncStatus.SYNCED
        assert conflicted.conflict is None
        assert conflicted.last_sync == T_CLOUD
        assert state.get_pending() is None
        assert http.forces == []

    def test_resolve_local(self, conflicted: SyncClient, http: FakeHTTP) -> None:
        """Choosing the local copy force-pushes it."""
        conflicted.upload({"v": "newest local"})

        resolution = conflicted.resolve_conflict(RESOLVE_LOCAL)

        assert resolution.status is SyncStatus.SYNCED
        assert resolution.last_sync == T_SERVER
        assert resolution.failure is None
        assert http.forces == [{"v": "newest local"}]
        assert conflicted.status is SyncStatus.SYNCED
        assert conflicted.last_sync == T_SERVER

    def test_resolve_local_failure(
        self, conflicted: SyncClient, http: FakeHTTP, state: LocalSyncState
    ) -> None:
        """A failed force push ends in error with the local copy queued."""
        http.force_errors = [TransientError("boom")]

        resolution = conflicted.resolve_conflict(RESOLVE_LOCAL)

        assert resolution.status is SyncStatus.ERROR
        assert resolution.failure is not None
        assert resolution.failure.queued is True
        assert conflicted.conflict is None
        entry = state.get_pending()
        assert entry is not None
        assert entry.payload == {"v": "local"}

    def test_resolve_without_conflict(self, client: SyncClient) -> None:
        """There is nothing to resolve outside conflict."""
        with pytest.raises(ValueError, match="No conflict"):
            client.resolve_conflict(RESOLVE_CLOUD)

    def test_resolve_unknown_choice(self, conflicted: SyncClient) -> None:
        """Only 'cloud' and 'local' are valid choices."""
        with pytest.raises(ValueError, match="Unknown conflict resolution"):
            conflicted.resolve_conflict("merge")
        assert conflicted.status is SyncStatus.CONFLICT

    def test_uploads_resume_after_resolution(
        self, conflicted: SyncClient, http: FakeHTTP
    ) -> None:
        """Once resolved, uploads go out again."""
        conflicted.resolve_conflict(RESOLVE_CLOUD)

        assert isinstance(conflicted.upload({"v": "next"}), Accepted)
        assert len(http.pushes) == 2


class TestDownload:
    """Tests for download and the session-start check."""

    def test_download(self, client: SyncClient, http: FakeHTTP, state: LocalSyncState) -> None:
        """download returns the cloud copy and records its lastSync."""
        http.pull_result = PullResult(data={"v": 1}, last_sync=T_CLOUD)

        result = client.download()

        assert result == PullResult(data={"v": 1}, last_sync=T_CLOUD)
        assert client.last_sync == T_CLOUD
        assert state.get_last_sync() == T_CLOUD
        assert client.status is SyncStatus.SYNCED

    def test_download_while_offline_keeps_offline(
        self, make_client: Callable[..., SyncClient], http: FakeHTTP
    ) -> None:
        """A pull that succeeds on a client marked offline does not claim synced."""
        client = make_client(online=False)
        http.pull_result = PullResult(data={"v": 1}, last_sync=T_CLOUD)

        result = client.download()

        assert result is not None
        assert client.last_sync == T_CLOUD
        assert client.status is SyncStatus.OFFLINE
        assert client.is_online is False

    def test_download_first_use(self, client: SyncClient) -> None:
        """Nothing stored yet is not an error."""
        result = client.download()

        assert result is not None
        assert result.data is None
        assert client.last_sync is None

    def test_download_failure(self, client: SyncClient, http: FakeHTTP) -> None:
        """A failed pull returns None and reports error."""
        http.pull_error = TransientError("boom")

        assert client.download() is None
        assert client.status is SyncStatus.ERROR

    def test_download_auth_failure(self, client: SyncClient, http: FakeHTTP) -> None:
        """A rejected credential on pull marks the client logged out."""
        http.pull_error = AuthenticationError("expired", 401)

        client.download()

        assert client.is_authenticated is False

    def test_download_not_authenticated(self, client: SyncClient, http: FakeHTTP) -> None:
        """A logged-out client does not pull."""
        http.token = ""

        assert client.download() is None
        assert http.pulls == 0

    def test_cloud_newer(self, client: SyncClient, http: FakeHTTP) -> None:
        """A cloud copy newer than the local one is offered."""
        http.pull_result = PullResult(data={"v": "cloud"}, last_sync=T_CLOUD)

        check = client.check_for_updates(T0)

        assert check.cloud_newer is True
        assert check.data == {"v": "cloud"}
        assert check.last_sync == T_CLOUD

    def test_local_newer(self, client: SyncClient, http: FakeHTTP) -> None:
        """A newer local copy is kept."""
        http.pull_result = PullResult(data={"v": "cloud"}, last_sync=T0)

        assert client.check_for_updates(T_CLOUD).cloud_newer is False

    def test_never_modified_locally(self, client: SyncClient, http: FakeHTTP) -> None:
        """A device that never modified anything adopts any cloud copy."""
        http.pull_result = PullResult(data=1, last_sync=T0)

        assert client.check_for_updates(None).cloud_newer is True

    def test_no_cloud_copy(self, client: SyncClient) -> None:
        """Nothing in the cloud means nothing to adopt."""
        assert client.check_for_updates(None).cloud_newer is False


class TestStart:
    """Tests for the session-start sequence."""

    def test_start_checks_then_flushes(
        self, client: SyncClient, http: FakeHTTP, state: LocalSyncState
    ) -> None:
        """start pulls, then sends what a previous session queued."""
        state.set_pending({"v": "queued"}, T_CLOUD)
        http.pull_result = PullResult(data={"v": "cloud"}, last_sync=T0)

        check = client.start(local_modified=T_CLOUD)

        assert check is not None
        assert check.cloud_newer is False
        assert http.pulls == 1
        assert http.pushes == [({"v": "queued"}, T0)]
        assert state.get_pending() is None

    def test_start_offline(self, make_client: Callable[..., SyncClient], http: FakeHTTP) -> None:
        """An offline start does nothing."""
        assert make_client(online=False).start() is None
        assert http.pulls == 0

    def test_start_logged_out(self, client: SyncClient, http: FakeHTTP) -> None:
        """A logged-out start does nothing."""
        http.token = ""

        assert client.start() is None
        assert http.pulls == 0


class TestSerialization:
    """Tests for mutual exclusion of network calls."""

    def test_uploads_never_overlap(self, state: LocalSyncState, clock: FakeClock, timers: FakeTimers) -> None:
        """A second upload waits for the first instead of running alongside it."""
        entered = threading.Event()
        release = threading.Event()

        class SlowHTTP(FakeHTTP):
            def __init__(self) -> None:
                super().__init__()
                self.in_flight = 0
                self.max_in_flight = 0
                self.lock = threading.Lock()

            def push(self, app_data: Any, local_timestamp: datetime) -> datetime:
                with self.lock:
                    self.in_flight += 1
                    self.max_in_flight = max(self.max_in_flight, self.in_flight)
                entered.set()
                release.wait(timeout=5.0)
                try:
                    return super().push(app_data, local_timestamp)
                finally:
                    with self.lock:
                        self.in_flight -= 1

        http = SlowHTTP()
        client = SyncClient(http, state, clock=clock, timer_factory=timers)  # type: ignore[arg-type]
        results: list[Any] = []

        first = threading.Thread(target=lambda: results.append(client.upload(1)))
        first.start()
        assert entered.wait(timeout=5.0)
        second = threading.Thread(target=lambda: results.append(client.upload(2)))
        second.start()
        release.set()
        first.join(timeout=5.0)
        second.join(timeout=5.0)

        assert http.max_in_flight == 1
        assert [p[0] for p in http.pushes] == [1, 2]
        assert all(isinstance(r, Accepted) for r in results)
