"""Shared utility functions for MangaShelf."""

from __future__ import annotations

import re
from pathlib import Path

# File extension constants
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}
ARCHIVE_EXTENSIONS = {".rar", ".cbr", ".zip", ".cbz", ".7z"}
ZIP_EXTENSIONS = {".zip", ".cbz"}
RAR_EXTENSIONS = {".rar", ".cbr"}
SEVEN_ZIP_EXTENSIONS = {".7z"}

# Entries left behind by archivers and desktop file managers (compared lowercase)
JUNK_FILES = {".ds_store", "thumbs.db", "desktop.ini"}
JUNK_DIRS = {"__macosx"}


def is_hidden(name: str) -> bool:
    return name.startswith(".")


def is_junk_file(name: str) -> bool:
    return name.lower() in JUNK_FILES


def is_junk_dir(name: str) -> bool:
    return name.lower() in JUNK_DIRS


def is_image_file(name: str) -> bool:
    """Check whether a filename is an importable page image.

    Hidden files are never pages, even with an image extension.
    """
    if is_hidden(name):
        return False
    return Path(name).suffix.lower() in IMAGE_EXTENSIONS


def is_archive(path: Path | str) -> bool:
    """Check whether a path names a supported archive by its extension."""
    return Path(path).suffix.lower() in ARCHIVE_EXTENSIONS


def sanitize_title(title: str) -> str:
    """Make a display title safe to use as a single directory name.

    Path separators and NUL are removed, whitespace runs collapse to one space.

    Args:
        title: Display title (e.g., "Yotsuba&!")

    Returns:
        Sanitized title, or "Untitled" if nothing is left
    """
    cleaned = re.sub(r"[/\\\x00]", " ", title)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    # "." and ".." would escape the library root
    cleaned = cleaned.strip(".").strip()
    return cleaned or "Untitled"


def resolve_display_title(
    anilist_id: int,
    title_romaji: str | None = None,
    title_english: str | None = None,
    title_native: str | None = None,
) -> str:
    """Pick the title used for the canonical library folder.

    Romaji wins over English and native; without any title the id is used.
    """
    for candidate in (title_romaji, title_english, title_native):
        if candidate and candidate.strip():
            return candidate.strip()
    return f"Manga {anilist_id}"


def format_volume_dir(volume_number: int) -> str:
    """Render a volume directory name: v01, v02, ..., v100."""
    return f"v{volume_number:02d}"


def manga_dir_name(title: str, anilist_id: int) -> str:
    """Render a manga directory name: "{title} [id-{anilist_id}]"."""
    return f"{sanitize_title(title)} [id-{anilist_id}]"
