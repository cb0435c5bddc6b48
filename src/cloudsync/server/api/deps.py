"""FastAPI dependencies for API routes."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from cloudsync.server.database import Database
from cloudsync.server.models import Token
from cloudsync.server.repository import SyncRecordRepository
from cloudsync.server.service import SyncService
from cloudsync.server.storage import BlobStore

# Security scheme
security = HTTPBearer(auto_error=False)


def get_db(request: Request) -> Database:
    """Get database from app state."""
    db: Database = request.app.state.db
    return db


def get_optional_storage(request: Request) -> BlobStore | None:
    """Get blob storage from app state, None when unconfigured."""
    storage: BlobStore | None = request.app.state.storage
    return storage


def get_storage(request: Request) -> BlobStore:
    """Get blob storage from app state."""
    storage = get_optional_storage(request)
    if storage is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cloud sync not configured",
        )
    return storage


def get_sync_service(
    request: Request,
    db: Database = Depends(get_db),
    storage: BlobStore = Depends(get_storage),
) -> SyncService:
    """Build the sync service over the configured storage."""
    return SyncService(
        SyncRecordRepository(db, storage),
        clock=request.app.state.clock,
        max_payload_bytes=request.app.state.max_payload_bytes,
    )


def get_current_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Token:
    """Validate bearer token and return Token object."""
    db = get_db(request)
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    token = db.validate_token(credentials.credentials)
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token
