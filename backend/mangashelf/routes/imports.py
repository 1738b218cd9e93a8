"""Import routes: manual pass trigger, pass status, managed volume listing."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession as SQLModelAsyncSession

from mangashelf.core.import_scheduler import ImportScheduler
from mangashelf.db.models import VOLUME_STATUSES, ManagedVolume

logger = structlog.get_logger("mangashelf.routes.imports")


# Request/Response Models
class ImportPassResponse(BaseModel):
    """Summary of one import pass."""

    imported: int
    failed: int
    skipped: int
    duration_seconds: float
    errors: list[str] = Field(default_factory=list)


class ImportStatusResponse(BaseModel):
    """Scheduler state."""

    running: bool
    loop_active: bool
    interval_seconds: float
    last_started_at: int | None
    last_finished_at: int | None
    last_result: ImportPassResponse | None
    last_error: str | None


class ManagedVolumeResponse(BaseModel):
    """Managed volume response model."""

    id: str
    managed_manga_id: str
    volume_number: int
    status: str
    torrent_id: str | None
    download_path: str | None
    error_message: str | None
    created_at: int
    updated_at: int
    imported_at: int | None


def get_import_scheduler(request: Request) -> ImportScheduler:
    """FastAPI dependency returning the app's import scheduler."""
    scheduler = getattr(request.app.state, "import_scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Import scheduler is not available",
        )
    return scheduler


def create_imports_router(
    get_db_session: Callable[[], AsyncIterator[SQLModelAsyncSession]],
) -> APIRouter:
    """Create imports router with database dependency.

    Args:
        get_db_session: Dependency function for database sessions

    Returns:
        Configured APIRouter instance
    """
    router = APIRouter(prefix="/api/imports", tags=["imports"])

    @router.post("/run", response_model=ImportPassResponse)
    async def run_import_pass(
        scheduler: ImportScheduler = Depends(get_import_scheduler),
    ) -> ImportPassResponse:
        """Run one import pass now, unless one is already running."""
        logger.info("Manual import pass requested")
        result = await scheduler.run_once()
        if result is None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="An import pass is already running",
            )
        return ImportPassResponse(**result.as_dict())

    @router.get("/status", response_model=ImportStatusResponse)
    async def get_import_status(
        scheduler: ImportScheduler = Depends(get_import_scheduler),
    ) -> ImportStatusResponse:
        """Get the import scheduler state and the last pass summary."""
        return ImportStatusResponse.model_validate(scheduler.status())

    @router.get("/volumes", response_model=list[ManagedVolumeResponse])
    async def list_managed_volumes(
        volume_status: str | None = Query(default=None, alias="status"),
        session: SQLModelAsyncSession = Depends(get_db_session),
    ) -> list[ManagedVolumeResponse]:
        """List managed volumes, optionally filtered by status (e.g. ?status=failed)."""
        query = select(ManagedVolume)
        if volume_status is not None:
            if volume_status not in VOLUME_STATUSES:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"status must be one of: {', '.join(VOLUME_STATUSES)}",
                )
            query = query.where(ManagedVolume.status == volume_status)
        query = query.order_by(
            col(ManagedVolume.managed_manga_id), col(ManagedVolume.volume_number)
        )
        result = await session.exec(query)
        return [ManagedVolumeResponse.model_validate(v, from_attributes=True) for v in result.all()]

    return router
