"""
Update job routes: progress polling, details, cancellation and history.
"""

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query

from ..db import BackupRecord, CamelModel, UpdateDetail, UpdateJob, UpdateStatus
from ..dependencies import get_db, get_orchestrator
from ..processor import ProgressSnapshot

router = APIRouter(prefix="/api/updates")

PAGE_SIZE = 25
RECENT_LIMIT = 5


class UpdateDetailsResponse(CamelModel):
    update: UpdateJob
    details: List[UpdateDetail]
    backups: List[BackupRecord]


class CancelResponse(CamelModel):
    success: bool
    message: str


class HistoryResponse(CamelModel):
    updates: List[UpdateJob]
    page: int
    has_prev: bool
    has_next: bool


async def _get_update_or_404(update_id: int) -> UpdateJob:
    update = await get_db().get_update(update_id)
    if not update:
        raise HTTPException(status_code=404, detail="Update not found")
    return update


@router.get("/history", response_model=HistoryResponse, response_model_by_alias=True)
async def history(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1)
):
    """Paged list of update jobs, newest first."""
    status_filter = None
    if status and status != "all":
        try:
            status_filter = UpdateStatus(status)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown status '{status}'")

    offset = (page - 1) * PAGE_SIZE
    updates = await get_db().get_updates(status=status_filter, limit=PAGE_SIZE + 1, offset=offset)

    return HistoryResponse(
        updates=updates[:PAGE_SIZE],
        page=page,
        has_prev=page > 1,
        has_next=len(updates) > PAGE_SIZE,
    )


@router.get("/recent", response_model=List[UpdateJob], response_model_by_alias=True)
async def recent():
    return await get_db().get_recent_updates(RECENT_LIMIT)


@router.get("/{update_id}/progress", response_model=ProgressSnapshot, response_model_by_alias=True)
async def progress(update_id: int):
    """Overall and per-store percentages of a job."""
    update = await _get_update_or_404(update_id)
    return await get_orchestrator().get_progress(update)


@router.get("/{update_id}/details", response_model=UpdateDetailsResponse, response_model_by_alias=True)
async def details(
    update_id: int,
    store_id: Optional[int] = Query(None, alias="storeId"),
    success: Optional[bool] = Query(None)
):
    """Per-row outcomes and backups of a job."""
    db = get_db()
    update = await _get_update_or_404(update_id)

    return UpdateDetailsResponse(
        update=update,
        details=await db.get_update_details(update_id, store_id=store_id, success=success),
        backups=await db.get_backup_records(update_id),
    )


@router.post("/{update_id}/cancel", response_model=CancelResponse)
async def cancel(update_id: int):
    """Stop a running job; rows not yet started are recorded as failed."""
    update = await _get_update_or_404(update_id)

    if update.is_finished:
        return CancelResponse(success=False, message=f"Update already {update.status.value}")

    if not get_orchestrator().cancel(update_id):
        return CancelResponse(success=False, message="Update is not running")

    return CancelResponse(success=True, message="Cancellation requested")
