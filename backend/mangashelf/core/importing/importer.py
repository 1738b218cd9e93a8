"""Copy one volume's pages into the canonical library layout."""

from __future__ import annotations

import os
import re
import shutil
import uuid
from pathlib import Path

import structlog

from mangashelf.core.importing.errors import NoImageFilesInVolume
from mangashelf.core.importing.models import ImportOutcome
from mangashelf.core.importing.page_sort import sort_image_files
from mangashelf.core.importing.tree import DirectoryNode, snapshot_tree
from mangashelf.core.utils import format_volume_dir, manga_dir_name

logger = structlog.get_logger("mangashelf.importing.importer")

_VOLUME_DIR = re.compile(r"^v(\d+)$", re.ASCII)


def volume_target_dir(library_root: Path, title: str, anilist_id: int, volume_number: int) -> Path:
    """Canonical directory of a volume: ``{title} [id-{id}]/v{NN}``."""
    return library_root / manga_dir_name(title, anilist_id) / format_volume_dir(volume_number)


def volume_numbers_on_disk(library_root: Path, title: str, anilist_id: int) -> set[int]:
    """Volume numbers that already have a directory under the manga's folder."""
    manga_dir = library_root / manga_dir_name(title, anilist_id)
    if not manga_dir.is_dir():
        return set()
    numbers: set[int] = set()
    for entry in manga_dir.iterdir():
        match = _VOLUME_DIR.match(entry.name)
        if match and entry.is_dir():
            numbers.add(int(match.group(1)))
    return numbers


def page_name_width(page_count: int) -> int:
    """Digits used for page names: 3, or 4 once a volume reaches 1000 pages."""
    return 4 if page_count >= 1000 else 3


def _ordered_pages(
    node: DirectoryNode,
    recursive: bool,
    spread_max_gap: int,
    unparseable_page_ratio: float,
) -> list[Path]:
    # Each directory is sorted on its own so chapter subfolders never interleave
    pages = sort_image_files(
        [node.path / name for name in node.image_files],
        spread_max_gap=spread_max_gap,
        unparseable_page_ratio=unparseable_page_ratio,
    )
    if recursive:
        for child in node.subdirectories():
            pages.extend(_ordered_pages(child, True, spread_max_gap, unparseable_page_ratio))
    return pages


def collect_pages(
    source_dir: Path,
    recursive: bool = True,
    spread_max_gap: int = 2,
    unparseable_page_ratio: float = 0.5,
) -> list[Path]:
    """List a volume's page images in reading order.

    Hidden files, junk directories and non-image files are skipped.
    """
    tree = snapshot_tree(source_dir)
    return _ordered_pages(tree, recursive, spread_max_gap, unparseable_page_ratio)


def import_volume(
    source_dir: Path,
    title: str,
    anilist_id: int,
    volume_number: int,
    library_root: Path,
    recursive: bool = True,
    spread_max_gap: int = 2,
    unparseable_page_ratio: float = 0.5,
) -> ImportOutcome:
    """Import one volume into the library.

    An existing target directory means the volume is already imported and
    nothing is touched. Pages are copied into a hidden staging directory and
    renamed into place, so the target only ever appears complete.

    Args:
        source_dir: Volume folder in the download
        title: Display title of the manga
        anilist_id: Numeric id used in the manga directory name
        volume_number: Final volume number
        library_root: Canonical library root
        recursive: Include images in subdirectories. False for a folder whose
            subfolders are volumes of their own.
        spread_max_gap: Passed to the page sorter
        unparseable_page_ratio: Passed to the page sorter

    Returns:
        ImportOutcome with status imported, already_imported or failed
    """
    target = volume_target_dir(library_root, title, anilist_id, volume_number)
    log = logger.bind(volume_number=volume_number, source=str(source_dir), target=str(target))

    if target.exists():
        log.info("Target already exists, skipping")
        return ImportOutcome(status="already_imported", volume_number=volume_number, target=target)

    pages = collect_pages(
        source_dir,
        recursive=recursive,
        spread_max_gap=spread_max_gap,
        unparseable_page_ratio=unparseable_page_ratio,
    )
    if not pages:
        error = NoImageFilesInVolume(source_dir)
        log.warning("No image files in volume", error=str(error))
        return ImportOutcome(
            status="failed",
            volume_number=volume_number,
            target=target,
            reason=str(error),
        )

    width = page_name_width(len(pages))
    staging = target.parent / f".{target.name}.importing-{uuid.uuid4().hex[:8]}"

    try:
        staging.mkdir(parents=True)
        for index, page in enumerate(pages, start=1):
            shutil.copyfile(page, staging / f"{index:0{width}d}{page.suffix.lower()}")
        os.rename(staging, target)
    except OSError as exc:
        shutil.rmtree(staging, ignore_errors=True)
        if target.exists():
            # Another import finished first
            log.info("Target appeared during copy, skipping")
            return ImportOutcome(
                status="already_imported", volume_number=volume_number, target=target
            )
        log.error("Volume copy failed", error=str(exc))
        return ImportOutcome(
            status="failed",
            volume_number=volume_number,
            target=target,
            page_count=len(pages),
            reason=f"copy failed: {exc}",
        )

    log.info("Volume imported", pages=len(pages))
    return ImportOutcome(
        status="imported",
        volume_number=volume_number,
        target=target,
        page_count=len(pages),
    )
