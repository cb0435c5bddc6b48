"""Network-aware helpers for the sync client.

This module provides:
- wait_for_network: Block until the server health endpoint answers
- ConnectivityMonitor: Background thread feeding online/offline
  transitions into a SyncClient

Reconnection is the only automatic retry trigger: the monitor never
re-sends anything itself, it only reports transitions and SyncClient
flushes its queue when it comes back online.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cloudsync.client.api import HTTPClient
    from cloudsync.client.sync import SyncClient

logger = logging.getLogger(__name__)

# Seconds between health checks
NETWORK_CHECK_INTERVAL = 5.0


def wait_for_network(
    client: HTTPClient,
    check_interval: float = NETWORK_CHECK_INTERVAL,
    timeout: float | None = None,
    on_waiting: Callable[[], None] | None = None,
    on_restored: Callable[[], None] | None = None,
) -> bool:
    """Wait for network connectivity to be restored.

    Polls the server health endpoint every check_interval seconds until the
    server becomes reachable or the timeout expires.

    Args:
        client: HTTPClient used for health checks.
        check_interval: Seconds between health check attempts.
        timeout: Give up after this many seconds (None waits forever).
        on_waiting: Optional callback when starting to wait.
        on_restored: Optional callback when network is restored.

    Returns:
        True once the server answered, False on timeout.
    """
    if client.health_check():
        return True

    logger.info(
        "Server unreachable. Waiting for connectivity (checking every %ss)...",
        check_interval,
    )
    if on_waiting:
        on_waiting()

    started = time.monotonic()
    attempts = 0
    while timeout is None or time.monotonic() - started < timeout:
        time.sleep(check_interval)
        attempts += 1

        if client.health_check():
            logger.info("Network restored after %.0fs", time.monotonic() - started)
            if on_restored:
                on_restored()
            return True

        if attempts % 12 == 0:
            logger.info(
                "Still waiting for network... (%.0fs elapsed)",
                time.monotonic() - started,
            )
    return False


class ConnectivityMonitor:
    """Polls server reachability and reports transitions to a SyncClient.

    Usage:
        monitor = ConnectivityMonitor(http_client, sync_client)
        monitor.start()
        ...
        monitor.stop()
    """

    def __init__(
        self,
        http: HTTPClient,
        sync_client: SyncClient,
        check_interval: float = NETWORK_CHECK_INTERVAL,
    ) -> None:
        self._http = http
        self._sync_client = sync_client
        self._check_interval = check_interval
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def check_once(self) -> bool:
        """Probe the server once and report the result.

        Returns:
            Whether the server is reachable.
        """
        online = self._http.health_check()
        if online != self._sync_client.is_online:
            logger.info("Connectivity changed: %s", "online" if online else "offline")
        self._sync_client.set_online(online)
        return online

    def start(self) -> None:
        """Start polling in a background thread."""
        if self._thread and self._thread.is_alive():
            logger.warning("ConnectivityMonitor already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="ConnectivityMonitor",
            daemon=True,
        )
        self._thread.start()
        logger.info("ConnectivityMonitor started")

    def stop(self) -> None:
        """Stop polling."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5.0)
            self._thread = None
        logger.info("ConnectivityMonitor stopped")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.check_once()
            except Exception:
                logger.exception("Connectivity check failed")
            self._stop_event.wait(self._check_interval)
