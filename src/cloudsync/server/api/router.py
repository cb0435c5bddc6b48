"""Main API router that includes all sub-routers."""

from __future__ import annotations

from fastapi import APIRouter

from cloudsync.server.api import health, sync

router = APIRouter()

router.include_router(health.router)
router.include_router(sync.router)
