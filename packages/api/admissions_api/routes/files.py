# This project was developed with assistance from AI tools.
"""Salesforce Files proxy routes."""

import logging
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, Response, status

from ..middleware.auth import CurrentUser
from ..services import files as file_service
from ..services.access import ProgressAccessDenied, ProgressNotFound
from ..services.files import FileAccessDenied, FileContent, InvalidVersionId, VersionNotFound
from ..services.salesforce import RecordStore, RecordStoreError

logger = logging.getLogger(__name__)

router = APIRouter()

ProgressId = Annotated[str, Query(alias="progressId", min_length=1)]


def _translate(exc: Exception, version_id: str) -> HTTPException:
    if isinstance(exc, InvalidVersionId):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, ProgressNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Progress not found")
    if isinstance(exc, VersionNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File version not found")
    if isinstance(exc, (ProgressAccessDenied, FileAccessDenied)):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to access this file")
    return _upstream_error(exc, version_id)


def _upstream_error(exc: RecordStoreError, version_id: str) -> HTTPException:
    if exc.status_code == 404:
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File version not found")
    logger.error("File proxy failed for %s: %s", version_id, exc)
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.error_code)


def _binary(file: FileContent, cache_control: str) -> Response:
    return Response(
        content=file.content,
        media_type=file.content_type,
        headers={"Cache-Control": cache_control, "Content-Disposition": "inline"},
    )


_PROXY_ERRORS = (
    InvalidVersionId,
    ProgressNotFound,
    ProgressAccessDenied,
    VersionNotFound,
    FileAccessDenied,
    RecordStoreError,
)


@router.get("/version/{version_id}/data")
async def get_version_data(
    version_id: str,
    user: CurrentUser,
    store: RecordStore,
    progress_id: ProgressId,
) -> Response:
    """Stream a ContentVersion's bytes inline."""
    try:
        file = await file_service.get_version_data(store, user.email, progress_id, version_id)
    except _PROXY_ERRORS as exc:
        raise _translate(exc, version_id) from exc
    return _binary(file, "private, max-age=60")


@router.get("/version/{version_id}/thumb")
async def get_version_thumbnail(
    version_id: str,
    user: CurrentUser,
    store: RecordStore,
    progress_id: ProgressId,
    width: int = Query(default=256, ge=16, le=1024),
    scale: int = Query(default=1, ge=1, le=4),
) -> Response:
    """Stream a ContentVersion thumbnail."""
    try:
        file = await file_service.get_version_thumbnail(
            store, user.email, progress_id, version_id, width=width, scale=scale
        )
    except _PROXY_ERRORS as exc:
        raise _translate(exc, version_id) from exc
    return _binary(file, "private, max-age=1800")
