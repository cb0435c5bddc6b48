"""Shared types for cloudsync.

This module defines types and enums used by the client and the CLI.
"""

from __future__ import annotations

from enum import Enum


class SyncStatus(str, Enum):
    """Sync status of a device.

    Exactly one value is current at any instant. Owned by SyncClient.
    """

    OFFLINE = "offline"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"
    CONFLICT = "conflict"
