"""Shared configuration classes for cloudsync."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ServerConfig:
    """Configuration for connecting to a cloudsync server.

    Attributes:
        server_url: Base URL of the server (e.g., "https://sync.example.com").
        token: Bearer credential for the user. Empty when not logged in.
        timeout: Request timeout in seconds. Bounds every pull and push.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str
    token: str = ""
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def api_url(self) -> str:
        """Base URL of the sync endpoints."""
        return f"{self.server_url}/api/sync"

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS.

        Returns:
            True if server uses HTTPS.
        """
        return self.server_url.startswith("https://")
