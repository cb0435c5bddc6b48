"""HTTP client for cloudsync server API.

This module provides:
- HTTPClient: HTTP client for the sync protocol (pull, push, force, status)
- The client-side error taxonomy raised by HTTPClient
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from cloudsync.core.config import ServerConfig
from cloudsync.core.timestamps import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Missing, invalid or expired credential. Never retried automatically."""


class ValidationError(APIError):
    """Request rejected as malformed (empty or oversized payload)."""


class ConflictError(APIError):
    """Cloud copy is newer than the pushed one."""

    def __init__(self, cloud_data: Any, cloud_timestamp: datetime | None) -> None:
        super().__init__("Conflict detected", 409)
        self.cloud_data = cloud_data
        self.cloud_timestamp = cloud_timestamp


class ServiceUnavailableError(APIError):
    """Storage backend not configured or temporarily busy."""


class TransientError(APIError):
    """Network failure, timeout or unexpected server error."""


@dataclass
class PullResult:
    """Payload and lastSync returned by a pull (both None on first use)."""

    data: Any
    last_sync: datetime | None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PullResult:
        """Create from API response dictionary."""
        return cls(data=data.get("data"), last_sync=parse_timestamp(data.get("lastSync")))


@dataclass
class ServerStatus:
    """Result of the status probe."""

    configured: bool
    last_sync: datetime | None
    user: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServerStatus:
        """Create from API response dictionary."""
        return cls(
            configured=data["configured"],
            last_sync=parse_timestamp(data.get("lastSync")),
            user=data["user"],
        )


def _detail(response: httpx.Response, default: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or default)
    return default


class HTTPClient:
    """HTTP client for the cloudsync sync protocol."""

    def __init__(
        self,
        config: ServerConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the HTTP client.

        Args:
            config: Server configuration (URL, token, timeout).
            transport: Optional httpx transport (tests mount the app here).
        """
        self._config = config
        self._client = httpx.Client(
            base_url=config.server_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            transport=transport,
        )
        self.set_token(config.token)

    @property
    def token(self) -> str:
        """Current bearer credential."""
        return self._config.token

    def set_token(self, token: str) -> None:
        """Replace the bearer credential used for subsequent requests."""
        self._config.token = token
        if token:
            self._client.headers["Authorization"] = f"Bearer {token}"
        else:
            self._client.headers.pop("Authorization", None)

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> HTTPClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, turning transport failures into TransientError."""
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientError(f"Request timed out: {e}") from e
        except httpx.RequestError as e:
            raise TransientError(f"Network error: {e}") from e
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        code = response.status_code
        if code == 401:
            raise AuthenticationError(_detail(response, "Invalid or expired token"), 401)
        if code == 409:
            body = response.json()
            raise ConflictError(
                body.get("cloudData"),
                parse_timestamp(body.get("cloudTimestamp")),
            )
        if code in (400, 413, 422):
            raise ValidationError(_detail(response, "Invalid request"), code)
        if code == 503:
            raise ServiceUnavailableError(_detail(response, "Cloud sync not configured"), 503)
        if code >= 400:
            raise TransientError(_detail(response, "Unknown error"), code)
        return response

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the server is reachable and healthy."""
        try:
            response = self._client.get("/health")
            return response.status_code == 200
        except httpx.RequestError:
            return False

    # === Sync operations ===

    def pull(self) -> PullResult:
        """Download the stored payload.

        Returns:
            PullResult, with both fields None when nothing is stored yet.
        """
        response = self._request("GET", "/api/sync")
        return PullResult.from_dict(response.json())

    def push(self, app_data: Any, local_timestamp: datetime) -> datetime:
        """Conditionally upload a payload.

        Args:
            app_data: Opaque payload.
            local_timestamp: When this device's copy was last modified.

        Returns:
            Server-assigned lastSync.

        Raises:
            ConflictError: If the cloud copy is newer.
        """
        response = self._request(
            "POST",
            "/api/sync",
            json={"appData": app_data, "localTimestamp": format_timestamp(local_timestamp)},
        )
        return self._last_sync(response)

    def force_push(self, app_data: Any) -> datetime:
        """Upload a payload, overwriting the cloud copy.

        Returns:
            Server-assigned lastSync.
        """
        response = self._request("POST", "/api/sync/force", json={"appData": app_data})
        return self._last_sync(response)

    def status(self) -> ServerStatus:
        """Probe configuration and freshness without transferring the payload."""
        response = self._request("GET", "/api/sync/status")
        return ServerStatus.from_dict(response.json())

    @staticmethod
    def _last_sync(response: httpx.Response) -> datetime:
        last_sync = parse_timestamp(response.json().get("lastSync"))
        if last_sync is None:
            raise TransientError("Server response missing lastSync", response.status_code)
        return last_sync
