"""Pydantic schemas for API request/response models.

Field names follow the wire protocol (camelCase) through aliases, so the
Python side stays snake_case.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    """Base model accepting both alias and field names."""

    model_config = ConfigDict(populate_by_name=True)


# === Sync schemas ===


class PushRequest(_WireModel):
    """Request body for a conditional push."""

    app_data: Any = Field(default=None, alias="appData")
    local_timestamp: datetime | None = Field(default=None, alias="localTimestamp")


class ForcePushRequest(_WireModel):
    """Request body for a forced push."""

    app_data: Any = Field(default=None, alias="appData")


class PullResponse(_WireModel):
    """Response for a pull. Both fields are null on first use."""

    data: Any = None
    last_sync: str | None = Field(default=None, alias="lastSync")


class PushResponse(_WireModel):
    """Response for an accepted or forced push."""

    last_sync: str = Field(alias="lastSync")


class ConflictResponse(_WireModel):
    """Body of a 409 response."""

    detail: str
    conflict: bool = True
    cloud_data: Any = Field(default=None, alias="cloudData")
    cloud_timestamp: str = Field(alias="cloudTimestamp")


class SyncStatusResponse(_WireModel):
    """Response for the status probe."""

    configured: bool
    last_sync: str | None = Field(default=None, alias="lastSync")
    user: str


# === Health schema ===


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
