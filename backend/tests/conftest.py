"""Shared test fixtures."""

from __future__ import annotations

import shutil
import tempfile
from collections.abc import AsyncIterator, Callable, Iterator
from pathlib import Path

import pytest
from prometheus_client import REGISTRY
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession as SQLModelAsyncSession

from mangashelf.core.database import create_database_engine, create_session_factory


@pytest.fixture(autouse=True)
def reset_prometheus_registry() -> Iterator[None]:
    """Drop the HTTP collectors registered by each app instance.

    prometheus-fastapi-instrumentator registers its metrics in the global
    registry, so creating the app in several tests would raise duplicate
    registration errors. Module-level import metrics stay registered.
    """
    yield
    for collector, names in list(REGISTRY._collector_to_names.items()):
        if any(name.startswith("http_") for name in names):
            REGISTRY.unregister(collector)


@pytest.fixture
async def session_factory() -> AsyncIterator[async_sessionmaker[SQLModelAsyncSession]]:
    """Session factory over a fresh SQLite database."""
    temp_dir = Path(tempfile.mkdtemp())
    db_path = temp_dir / "test.db"

    try:
        engine = create_database_engine(db_path, echo=False)
        factory = create_session_factory(engine)

        from mangashelf.db.models import metadata

        async with engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

        yield factory

        await engine.dispose()
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[SQLModelAsyncSession],
) -> AsyncIterator[SQLModelAsyncSession]:
    """Create a database session for testing."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_pages() -> Callable[[Path, list[str]], list[Path]]:
    """Factory creating small fake page images, each holding its own name."""

    def _make(directory: Path, names: list[str]) -> list[Path]:
        directory.mkdir(parents=True, exist_ok=True)
        paths = []
        for name in names:
            path = directory / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(name.encode("utf-8"))
            paths.append(path)
        return paths

    return _make
