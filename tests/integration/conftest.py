"""Pytest fixtures for integration tests.

This module provides fixtures for end-to-end testing with a real server
running in a background thread with local filesystem storage.
"""

from __future__ import annotations

import socket
import threading
import time
from collections.abc import Callable, Generator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest
import uvicorn
from httpx import Client

from cloudsync.client.api import HTTPClient
from cloudsync.client.state import LocalSyncState
from cloudsync.client.sync import SyncClient
from cloudsync.core.config import ServerConfig
from cloudsync.server.app import create_app
from cloudsync.server.database import Database
from cloudsync.server.storage import LocalFSStorage


@dataclass
class TestServer:
    """Container for test server resources."""

    db: Database
    storage: LocalFSStorage
    url: str

    def create_user(self, name: str) -> str:
        """Create a user and return a bearer token for it."""
        user = self.db.get_user_by_name(name) or self.db.create_user(name)
        raw_token, _ = self.db.create_token(user.id)
        return raw_token


@dataclass
class Device:
    """A simulated device running a SyncClient."""

    name: str
    state: LocalSyncState
    http: HTTPClient
    sync: SyncClient

    def close(self) -> None:
        self.sync.close()
        self.http.close()
        self.state.close()


class UvicornTestServer:
    """Uvicorn server running in a background thread for testing."""

    def __init__(self, app: Any, host: str = "127.0.0.1") -> None:
        self.app = app
        self.host = host
        self.port = 0
        self.server: uvicorn.Server | None = None
        self.thread: threading.Thread | None = None

    def start(self) -> int:
        """Start the server and return the port."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind((self.host, 0))
            self.port = s.getsockname()[1]

        config = uvicorn.Config(self.app, host=self.host, port=self.port, log_level="warning")
        self.server = uvicorn.Server(config)

        self.thread = threading.Thread(target=self.server.run, daemon=True)
        self.thread.start()

        self._wait_for_ready()
        return self.port

    def _wait_for_ready(self, timeout: float = 5.0) -> None:
        """Wait for the server to be ready to accept connections."""
        start = time.time()
        while time.time() - start < timeout:
            try:
                with Client() as client:
                    response = client.get(f"http://{self.host}:{self.port}/health")
                    if response.status_code == 200:
                        return
            except Exception:
                pass
            time.sleep(0.1)
        raise RuntimeError("Server failed to start in time")

    def stop(self) -> None:
        """Stop the server."""
        if self.server:
            self.server.should_exit = True
        if self.thread:
            self.thread.join(timeout=5.0)


@pytest.fixture
def test_server(tmp_path: Path) -> Generator[TestServer, None, None]:
    """Create and start a test server with local storage."""
    db = Database(tmp_path / "server" / "cloudsync.db")
    storage = LocalFSStorage(tmp_path / "server" / "blobs")

    server = UvicornTestServer(create_app(db, storage))
    port = server.start()

    yield TestServer(db=db, storage=storage, url=f"http://127.0.0.1:{port}")

    server.stop()
    db.close()


@pytest.fixture
def device_factory(
    tmp_path: Path, test_server: TestServer
) -> Generator[Callable[..., Device], None, None]:
    """Factory fixture creating devices logged in as the same user."""
    devices: list[Device] = []
    token = test_server.create_user("alice")

    def _create(name: str, **kwargs: Any) -> Device:
        state = LocalSyncState(tmp_path / "devices" / name / "state.db")
        http = HTTPClient(ServerConfig(server_url=test_server.url, token=token, timeout=5.0))
        kwargs.setdefault("debounce_seconds", 0.05)
        device = Device(name=name, state=state, http=http, sync=SyncClient(http, state, **kwargs))
        devices.append(device)
        return device

    yield _create

    for device in devices:
        device.close()


@pytest.fixture
def device_a(device_factory: Callable[..., Device]) -> Device:
    """First device."""
    return device_factory("device-a")


@pytest.fixture
def device_b(device_factory: Callable[..., Device]) -> Device:
    """Second device."""
    return device_factory("device-b")
