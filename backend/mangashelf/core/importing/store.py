"""Managed-volume persistence used by the import pass.

Functions here only stage changes on the session; the caller commits.
"""

from __future__ import annotations

import time

import structlog
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession as SQLModelAsyncSession

from mangashelf.core.utils import resolve_display_title
from mangashelf.db.models import VOLUME_STATUSES, ManagedManga, ManagedVolume

logger = structlog.get_logger("mangashelf.importing.store")


def display_title(manga: ManagedManga) -> str:
    """Title used for the manga's canonical library folder."""
    return resolve_display_title(
        manga.anilist_id,
        title_romaji=manga.title_romaji,
        title_english=manga.title_english,
        title_native=manga.title_native,
    )


async def get_imported_volume_numbers(
    session: SQLModelAsyncSession,
    managed_manga_id: str,
) -> set[int]:
    """Volume numbers recorded as imported for a manga."""
    result = await session.exec(
        select(ManagedVolume.volume_number).where(
            ManagedVolume.managed_manga_id == managed_manga_id,
            ManagedVolume.status == "imported",
        )
    )
    return set(result.all())


async def get_volume(
    session: SQLModelAsyncSession,
    managed_manga_id: str,
    volume_number: int,
) -> ManagedVolume | None:
    result = await session.exec(
        select(ManagedVolume).where(
            ManagedVolume.managed_manga_id == managed_manga_id,
            ManagedVolume.volume_number == volume_number,
        )
    )
    return result.first()


async def upsert_volume_status(
    session: SQLModelAsyncSession,
    managed_manga_id: str,
    volume_number: int,
    status: str,
    error_message: str | None = None,
) -> ManagedVolume:
    """Set a volume's status, creating its row when it does not exist yet.

    Args:
        session: Database session
        managed_manga_id: Owning manga
        volume_number: Volume number
        status: One of VOLUME_STATUSES
        error_message: Stored as-is; cleared for any status other than failed

    Returns:
        The created or updated ManagedVolume
    """
    if status not in VOLUME_STATUSES:
        raise ValueError(f"Unknown volume status: {status}")

    now = int(time.time())
    volume = await get_volume(session, managed_manga_id, volume_number)
    if volume is None:
        volume = ManagedVolume(
            managed_manga_id=managed_manga_id,
            volume_number=volume_number,
            status=status,
        )
        logger.debug(
            "Managed volume created",
            managed_manga_id=managed_manga_id,
            volume_number=volume_number,
            status=status,
        )
    else:
        volume.status = status
        volume.updated_at = now

    volume.error_message = error_message if status == "failed" else None
    if status == "imported":
        volume.imported_at = now

    session.add(volume)
    await session.flush()
    return volume


async def list_downloading_volumes(
    session: SQLModelAsyncSession,
) -> list[ManagedVolume]:
    """Volumes waiting on the download client."""
    result = await session.exec(
        select(ManagedVolume)
        .where(
            ManagedVolume.status == "downloading",
            col(ManagedVolume.torrent_id).is_not(None),
        )
        .order_by(ManagedVolume.managed_manga_id, ManagedVolume.volume_number)
    )
    return list(result.all())


async def list_volumes_awaiting_import(
    session: SQLModelAsyncSession,
) -> list[tuple[ManagedVolume, ManagedManga]]:
    """Downloaded single-volume downloads with a known location."""
    result = await session.exec(
        select(ManagedVolume, ManagedManga)
        .join(ManagedManga, col(ManagedManga.id) == col(ManagedVolume.managed_manga_id))
        .where(
            ManagedVolume.status == "downloaded",
            col(ManagedVolume.download_path).is_not(None),
        )
        .order_by(ManagedManga.anilist_id, ManagedVolume.volume_number)
    )
    return list(result.all())


async def list_pending_batches(
    session: SQLModelAsyncSession,
) -> list[ManagedManga]:
    """Mangas whose batch download is still in the download client."""
    result = await session.exec(
        select(ManagedManga)
        .where(
            col(ManagedManga.bulk_torrent_id).is_not(None),
            col(ManagedManga.bulk_download_path).is_(None),
        )
        .order_by(ManagedManga.anilist_id)
    )
    return list(result.all())


async def list_batches_awaiting_import(
    session: SQLModelAsyncSession,
) -> list[ManagedManga]:
    """Mangas with a completed batch download waiting to be imported."""
    result = await session.exec(
        select(ManagedManga)
        .where(col(ManagedManga.bulk_download_path).is_not(None))
        .order_by(ManagedManga.anilist_id)
    )
    return list(result.all())


def clear_batch_marker(session: SQLModelAsyncSession, manga: ManagedManga) -> None:
    """Forget a manga's batch download so it is never retried."""
    manga.bulk_torrent_id = None
    manga.bulk_download_path = None
    manga.bulk_download_name = None
    manga.updated_at = int(time.time())
    session.add(manga)
