"""Database models for MangaShelf.

All SQLModel models should be defined here and imported in db/__init__.py.

Models follow these patterns:
- Use singular nouns: ManagedManga, ManagedVolume
- Table names use plural, snake_case: managed_mangas, managed_volumes
- Use uuid.uuid4().hex for IDs (32 character hex strings)
- Include created_at and updated_at timestamps
"""

from __future__ import annotations

import time
import uuid

from sqlalchemy import Index, UniqueConstraint
from sqlmodel import Field, SQLModel

metadata = SQLModel.metadata

# Managed volume lifecycle
VOLUME_STATUSES = (
    "missing",
    "searching",
    "downloading",
    "downloaded",
    "available",
    "imported",
    "failed",
)


class ManagedManga(SQLModel, table=True):
    """A manga series tracked for acquisition and import."""

    __tablename__ = "managed_mangas"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    anilist_id: int = Field(unique=True, index=True)  # Used in the canonical folder name
    title_romaji: str | None = Field(default=None)
    title_english: str | None = Field(default=None)
    title_native: str | None = Field(default=None)
    total_volumes: int | None = Field(default=None)
    monitored: bool = Field(default=True)

    # Outstanding batch download; both cleared once the batch has been processed
    bulk_torrent_id: str | None = Field(default=None, index=True)
    bulk_download_path: str | None = Field(default=None)
    bulk_download_name: str | None = Field(default=None)

    created_at: int = Field(default_factory=lambda: int(time.time()))
    updated_at: int = Field(default_factory=lambda: int(time.time()))

    __table_args__ = (Index("idx_managed_mangas_monitored", "monitored"),)


class ManagedVolume(SQLModel, table=True):
    """One volume's acquisition and import lifecycle."""

    __tablename__ = "managed_volumes"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    managed_manga_id: str = Field(foreign_key="managed_mangas.id", index=True)
    volume_number: int
    status: str = Field(
        default="missing", index=True
    )  # missing, searching, downloading, downloaded, available, imported, failed
    torrent_id: str | None = Field(default=None)
    download_path: str | None = Field(default=None)  # Completed download (file or directory)
    download_name: str | None = Field(default=None)  # Display name of the download
    error_message: str | None = Field(default=None)
    created_at: int = Field(default_factory=lambda: int(time.time()))
    updated_at: int = Field(default_factory=lambda: int(time.time()))
    imported_at: int | None = Field(default=None)

    __table_args__ = (
        UniqueConstraint(
            "managed_manga_id", "volume_number", name="uq_managed_volumes_manga_number"
        ),
        Index("idx_managed_volumes_status", "status"),
    )
