"""Core module - Shared config, timestamps and types."""

from cloudsync.core.config import ServerConfig
from cloudsync.core.timestamps import (
    EPOCH,
    Clock,
    ensure_utc,
    format_timestamp,
    parse_timestamp,
    utc_now,
)
from cloudsync.core.types import SyncStatus

__all__ = [
    # Config
    "ServerConfig",
    # Timestamps
    "Clock",
    "EPOCH",
    "ensure_utc",
    "format_timestamp",
    "parse_timestamp",
    "utc_now",
    # Types
    "SyncStatus",
]
