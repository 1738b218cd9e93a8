"""Database models and utilities.

This module exports all database models and provides database-related utilities.
"""

from __future__ import annotations

from mangashelf.db.models import (
    VOLUME_STATUSES,
    ManagedManga,
    ManagedVolume,
    metadata,
)

__all__ = [
    "metadata",
    "VOLUME_STATUSES",
    "ManagedManga",
    "ManagedVolume",
]
