# This project was developed with assistance from AI tools.
"""Progress routes: dashboard listing, detail view and segmented updates."""

import logging

from fastapi import APIRouter, Body, HTTPException, status

from ..middleware.auth import CurrentUser
from ..schemas.progress import (
    PatchResponse,
    ProgressDetailResponse,
    ProgressListResponse,
    ProgressPatch,
)
from ..services import progress as progress_service
from ..services.access import ProgressAccessDenied, ProgressNotFound
from ..services.progress import InvalidPayload
from ..services.salesforce import RecordStore

logger = logging.getLogger(__name__)

router = APIRouter()


def _translate(exc: Exception) -> HTTPException:
    if isinstance(exc, ProgressNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Progress not found")
    if isinstance(exc, ProgressAccessDenied):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to access this progress")
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get("/progress", response_model=ProgressListResponse)
async def list_progress(user: CurrentUser, store: RecordStore) -> ProgressListResponse:
    """Opportunities belonging to the caller's applicant account."""
    return await progress_service.list_progress(store, user.email)


@router.get("/progress/{progress_id}", response_model=ProgressDetailResponse)
async def get_progress(progress_id: str, user: CurrentUser, store: RecordStore) -> ProgressDetailResponse:
    """Progress detail with student, parents, documents (resolved versions) and payments."""
    try:
        detail = await progress_service.get_progress_detail(store, user.email, progress_id)
    except (ProgressNotFound, ProgressAccessDenied) as exc:
        raise _translate(exc) from exc
    return ProgressDetailResponse(data=detail)


@router.patch(
    "/progress/{progress_id}",
    response_model=PatchResponse,
    response_model_exclude_none=True,
)
async def patch_progress(
    progress_id: str,
    user: CurrentUser,
    store: RecordStore,
    body: ProgressPatch = Body(...),
) -> PatchResponse:
    """Write one segment (student, parents, documents or activate) of a progress."""
    try:
        activated = await progress_service.apply_patch(store, user.email, progress_id, body)
    except (ProgressNotFound, ProgressAccessDenied, InvalidPayload) as exc:
        raise _translate(exc) from exc
    logger.info("Progress %s segment %s updated by %s", progress_id, body.segment, user.user_id)
    return PatchResponse(progress=activated)
