"""FastAPI application for cloudsync server.

This module creates and configures the FastAPI application with the
health check and the sync protocol routes.

Usage:
    uvicorn cloudsync.server.app:app_factory --factory --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from cloudsync.core.timestamps import Clock, utc_now
from cloudsync.server.api.router import router as api_router
from cloudsync.server.database import Database
from cloudsync.server.service import DEFAULT_MAX_PAYLOAD_BYTES
from cloudsync.server.storage import BlobStore, create_storage

# Configuration from environment variables with defaults
DB_PATH = Path(os.environ.get("CLOUDSYNC_DB_PATH", "cloudsync.db"))
LOG_PATH = Path(os.environ.get("CLOUDSYNC_LOG_PATH", "cloudsync-server.log"))
MAX_PAYLOAD_BYTES = int(
    os.environ.get("CLOUDSYNC_MAX_PAYLOAD_BYTES", str(DEFAULT_MAX_PAYLOAD_BYTES))
)

logger = logging.getLogger(__name__)


def build_storage_config() -> dict[str, str | None]:
    """Build storage configuration from environment variables."""
    storage_type = os.environ.get("CLOUDSYNC_STORAGE_TYPE")

    # S3 storage if bucket is configured
    s3_bucket = os.environ.get("CLOUDSYNC_S3_BUCKET")
    if storage_type == "s3" or (storage_type is None and s3_bucket):
        return {
            "type": "s3",
            "bucket": s3_bucket,
            "endpoint_url": os.environ.get("CLOUDSYNC_S3_ENDPOINT"),
            "access_key": os.environ.get("CLOUDSYNC_S3_ACCESS_KEY"),
            "secret_key": os.environ.get("CLOUDSYNC_S3_SECRET_KEY"),
            "region": os.environ.get("CLOUDSYNC_S3_REGION", "auto"),
        }

    if storage_type == "none":
        return {"type": "none"}

    # Local storage (default)
    return {
        "type": "local",
        "local_path": os.environ.get("CLOUDSYNC_STORAGE_PATH", "storage"),
    }


def setup_logging(log_path: Path) -> None:
    """Configure logging to output to both file and stdout.

    Args:
        log_path: Path to the log file.
    """
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = logging.Formatter(log_format)

    root_logger = logging.getLogger("cloudsync")
    root_logger.setLevel(logging.INFO)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Also capture uvicorn logs to file
    for uvicorn_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(uvicorn_name)
        uvicorn_logger.addHandler(file_handler)


def create_app(
    db: Database,
    storage: BlobStore | None = None,
    clock: Clock = utc_now,
    max_payload_bytes: int = MAX_PAYLOAD_BYTES,
) -> FastAPI:
    """Create FastAPI application with custom database and storage.

    This is primarily used for testing with isolated databases.

    Args:
        db: Database instance.
        storage: Optional BlobStore. None leaves sync unconfigured (503).
        clock: Source of server time for lastSync.
        max_payload_bytes: Largest accepted payload.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        db_path = getattr(db, "_db_path", "in-memory")
        logger.info("=" * 60)
        logger.info("cloudsync server starting")
        logger.info("=" * 60)
        logger.info("  Database: %s", db_path)
        if storage:
            logger.info("  Storage:  %s", storage.location)
        else:
            logger.info("  Storage:  None (sync not configured)")
        logger.info("=" * 60)

        yield

        logger.info("cloudsync server shutting down")

    application = FastAPI(
        title="cloudsync server",
        description="Multi-device application state sync",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.state.db = db
    application.state.storage = storage
    application.state.clock = clock
    application.state.max_payload_bytes = max_payload_bytes

    application.include_router(api_router)

    return application


def app_factory() -> FastAPI:
    """Factory function for uvicorn --factory mode."""
    setup_logging(LOG_PATH)
    return create_app(
        db=Database(DB_PATH),
        storage=create_storage(build_storage_config()),
    )
