"""Volume folder detection over directory snapshots."""

from __future__ import annotations

import structlog

from mangashelf.core.importing.models import VolumeFolder
from mangashelf.core.importing.tree import DirectoryNode

logger = structlog.get_logger("mangashelf.importing.folders")


def find_volume_folders(tree: DirectoryNode) -> list[VolumeFolder]:
    """Find the directories that are volumes in a download tree.

    A directory is a volume when it directly contains page images. Wrapper
    directories without images are skipped transparently; a directory with both
    loose images and volume subfolders yields the subfolders plus itself.

    Args:
        tree: Snapshot of the download (or its extraction directory)

    Returns:
        Volume folders in tree order (children before their parent)
    """
    folders = _find(tree, ())
    logger.debug(
        "Volume folders detected",
        root=str(tree.path),
        count=len(folders),
        folders=[folder.name for folder in folders],
    )
    return folders


def _find(node: DirectoryNode, ancestors: tuple[str, ...]) -> list[VolumeFolder]:
    child_ancestors = (node.name, *ancestors)

    child_volumes: list[VolumeFolder] = []
    for child in node.subdirectories():
        child_volumes.extend(_find(child, child_ancestors))

    if child_volumes:
        if node.has_images:
            # Loose pages beside volume subfolders form a volume of their own
            child_volumes.append(_volume(node, ancestors, loose_pages=True))
        return child_volumes

    if node.has_images:
        return [_volume(node, ancestors, loose_pages=False)]

    return []


def _volume(node: DirectoryNode, ancestors: tuple[str, ...], loose_pages: bool) -> VolumeFolder:
    page_count = sum(1 for _ in node.iter_image_paths(recursive=not loose_pages))
    return VolumeFolder(
        path=node.path,
        name=node.name,
        ancestors=ancestors,
        page_count=page_count,
        loose_pages=loose_pages,
    )
