"""Application entry point for MangaShelf."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from sqlmodel.ext.asyncio.session import AsyncSession as SQLModelAsyncSession

from mangashelf.core.config import Settings, get_settings
from mangashelf.core.database import (
    create_database_engine,
    create_session_factory,
    init_database,
)
from mangashelf.core.import_scheduler import ImportScheduler
from mangashelf.core.importing.downloads import DelugeClient, DownloadClient
from mangashelf.core.importing.orchestrator import CatalogRefresher, ImportOrchestrator
from mangashelf.core.logging import setup_logging
from mangashelf.core.metrics import setup_metrics
from mangashelf.core.routes import create_app_router

logger = structlog.get_logger("mangashelf.app")

APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    settings: Settings = app.state.settings
    logger.info(
        "Starting MangaShelf application",
        version=APP_VERSION,
        env=settings.env,
        host=settings.host_bind_address,
        port=settings.host_port,
        library_dir=str(settings.manga_dir),
    )

    await init_database(app.state.engine)

    scheduler: ImportScheduler = app.state.import_scheduler
    if settings.auto_import_enabled:
        scheduler.start()
        logger.info("Import scheduler started", interval_seconds=settings.import_interval_seconds)
    else:
        logger.info("Automatic import is disabled")

    yield

    await scheduler.stop()
    logger.info("Import scheduler stopped")

    download_client: DownloadClient | None = app.state.download_client
    if download_client is not None:
        await download_client.aclose()

    logger.info("Shutting down MangaShelf application")
    await app.state.engine.dispose()
    logger.info("Database engine disposed")


def create_app(
    settings: Settings | None = None,
    download_client: DownloadClient | None = None,
    catalog_refresher: CatalogRefresher | None = None,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Settings to use; defaults to the cached global settings
        download_client: Download client to poll; defaults to Deluge when
            ``deluge_url`` is configured
        catalog_refresher: Coroutine function called after a pass that imported volumes
    """
    settings = settings or get_settings()

    setup_logging(debug=settings.log_level == "DEBUG", logs_dir=settings.logs_dir)

    app = FastAPI(
        title="MangaShelf",
        description="Manga volume import and library normalization",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    # Database engine is created synchronously; tables are created in lifespan
    engine = create_database_engine(settings.database_file, echo=False)
    async_session_factory = create_session_factory(engine)

    if download_client is None and settings.deluge_url:
        download_client = DelugeClient(settings.deluge_url, settings.deluge_password)

    orchestrator = ImportOrchestrator(
        async_session_factory,
        settings,
        download_client=download_client,
        catalog_refresher=catalog_refresher,
    )
    scheduler = ImportScheduler(
        orchestrator.run_pass,
        interval_seconds=settings.import_interval_seconds,
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.async_session_factory = async_session_factory
    app.state.download_client = download_client
    app.state.import_orchestrator = orchestrator
    app.state.import_scheduler = scheduler
    logger.info("Database engine and import scheduler created")

    async def get_db_session() -> AsyncIterator[SQLModelAsyncSession]:
        """FastAPI dependency for database sessions."""
        async with async_session_factory() as session:
            yield session

    setup_metrics(app, APP_VERSION)

    app.include_router(create_app_router(get_db_session))

    return app


def main() -> None:
    """Main entry point."""
    from mangashelf.core.config import reload_settings

    current_settings = reload_settings()
    app = create_app(current_settings)

    import uvicorn

    logger.info(
        "Starting uvicorn server",
        host=current_settings.host_bind_address,
        port=current_settings.host_port,
    )

    uvicorn.run(
        app,
        host=current_settings.host_bind_address,
        port=current_settings.host_port,
        log_config=None,  # We use structlog
        reload=False,
    )


if __name__ == "__main__":
    main()
