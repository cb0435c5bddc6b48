"""Configuration utilities for cloudsync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
from pathlib import Path

from cloudsync.core.config import ServerConfig

DEFAULT_TIMEOUT = 30.0


def get_config_dir() -> Path:
    """Get the configuration directory for cloudsync.

    Returns:
        Path to ~/.cloudsync.
    """
    return Path.home() / ".cloudsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_state_db() -> Path:
    """Get the path to the local sync state database."""
    return get_config_dir() / "state.db"


def load_config() -> dict[str, str]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, str]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_server_config() -> ServerConfig | None:
    """Build the server configuration from the config file.

    Returns:
        ServerConfig, or None if no server is configured.
    """
    config = load_config()
    if not config.get("server_url"):
        return None
    return ServerConfig(
        server_url=config["server_url"],
        token=config.get("token", ""),
        timeout=float(config.get("timeout", DEFAULT_TIMEOUT)),
    )
