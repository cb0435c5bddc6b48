"""Sync API routes.

Routes:
- GET  /api/sync         pull the stored payload
- POST /api/sync         conditional push (409 on conflict)
- POST /api/sync/force   unconditional push
- GET  /api/sync/status  configuration and freshness probe
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from cloudsync.core.timestamps import format_timestamp
from cloudsync.server.api.deps import (
    get_current_token,
    get_db,
    get_optional_storage,
    get_sync_service,
)
from cloudsync.server.database import Database
from cloudsync.server.models import Token
from cloudsync.server.repository import (
    RecordCorruptError,
    StaleRecordError,
    SyncRecordRepository,
)
from cloudsync.server.schemas import (
    ConflictResponse,
    ForcePushRequest,
    PullResponse,
    PushRequest,
    PushResponse,
    SyncStatusResponse,
)
from cloudsync.server.service import (
    PayloadTooLargeError,
    SyncConflictError,
    SyncService,
    ValidationError,
)
from cloudsync.server.storage import BlobStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


def _validation_error(e: ValidationError) -> HTTPException:
    if isinstance(e, PayloadTooLargeError):
        return HTTPException(
            status_code=status.HTTP_413_CONTENT_TOO_LARGE,
            detail=str(e),
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _busy_error(e: StaleRecordError) -> HTTPException:
    logger.error("Sync write contention: %s", e)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Too many concurrent writes, retry later",
        headers={"Retry-After": "1"},
    )


@router.get("", response_model=PullResponse)
def pull(
    auth: Token = Depends(get_current_token),
    service: SyncService = Depends(get_sync_service),
) -> PullResponse:
    """Download the user's payload."""
    try:
        result = service.pull(auth.user_id)
    except RecordCorruptError as e:
        logger.error("Unreadable record for user %s: %s", auth.user_id, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to download data",
        ) from e
    return PullResponse(data=result.data, last_sync=format_timestamp(result.last_sync))


@router.post(
    "",
    response_model=PushResponse,
    responses={status.HTTP_409_CONFLICT: {"model": ConflictResponse}},
)
def push(
    request: PushRequest | None = None,
    auth: Token = Depends(get_current_token),
    service: SyncService = Depends(get_sync_service),
) -> PushResponse | JSONResponse:
    """Upload the user's payload unless the cloud copy is newer."""
    request = request or PushRequest()
    try:
        last_sync = service.accept(auth.user_id, request.app_data, request.local_timestamp)
    except ValidationError as e:
        raise _validation_error(e) from e
    except SyncConflictError as e:
        body = ConflictResponse(
            detail="Conflict detected",
            cloud_data=e.record.payload,
            cloud_timestamp=e.record.last_sync.isoformat(),
        )
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=body.model_dump(mode="json", by_alias=True),
        )
    except RecordCorruptError as e:
        logger.error("Unreadable record for user %s: %s", auth.user_id, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to sync data",
        ) from e
    except StaleRecordError as e:
        raise _busy_error(e) from e
    return PushResponse(last_sync=last_sync.isoformat())


@router.post("/force", response_model=PushResponse)
def force_push(
    request: ForcePushRequest | None = None,
    auth: Token = Depends(get_current_token),
    service: SyncService = Depends(get_sync_service),
) -> PushResponse:
    """Upload the user's payload, overwriting the cloud copy."""
    request = request or ForcePushRequest()
    try:
        last_sync = service.force(auth.user_id, request.app_data)
    except ValidationError as e:
        raise _validation_error(e) from e
    except StaleRecordError as e:
        raise _busy_error(e) from e
    return PushResponse(last_sync=last_sync.isoformat())


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(
    auth: Token = Depends(get_current_token),
    db: Database = Depends(get_db),
    storage: BlobStore | None = Depends(get_optional_storage),
) -> SyncStatusResponse:
    """Report whether sync is configured and when the user last synced."""
    if storage is None:
        return SyncStatusResponse(configured=False, last_sync=None, user=auth.user_id)
    result = SyncService(SyncRecordRepository(db, storage)).status(auth.user_id)
    return SyncStatusResponse(
        configured=result.configured,
        last_sync=format_timestamp(result.last_sync),
        user=result.user,
    )
