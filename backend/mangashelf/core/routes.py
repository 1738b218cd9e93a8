"""Application routes."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable

import structlog
from fastapi import APIRouter
from sqlmodel.ext.asyncio.session import AsyncSession as SQLModelAsyncSession

from mangashelf.routes import general
from mangashelf.routes.imports import create_imports_router

logger = structlog.get_logger("mangashelf.routes")


def create_app_router(
    get_db_session: Callable[[], AsyncIterator[SQLModelAsyncSession]],
) -> APIRouter:
    """Create and configure main application router.

    Args:
        get_db_session: Dependency function for database sessions

    Returns:
        Configured APIRouter instance
    """
    router = APIRouter()

    router.include_router(general.router, tags=["general"])

    imports_router = create_imports_router(get_db_session)
    router.include_router(imports_router, tags=["imports"])
    logger.debug("Included imports router in app_router")

    return router
