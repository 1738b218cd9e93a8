"""Immutable directory-tree snapshots.

The folder and numbering heuristics run over these snapshots instead of the live
filesystem, so they can be exercised with hand-built trees.
"""

from __future__ import annotations

import os
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from mangashelf.core.utils import is_hidden, is_image_file, is_junk_dir

logger = structlog.get_logger("mangashelf.importing.tree")


@dataclass(frozen=True)
class DirectoryNode:
    """One directory: its file names and its child directories, both sorted."""

    name: str
    path: Path
    files: tuple[str, ...] = ()
    children: tuple[DirectoryNode, ...] = ()

    @property
    def image_files(self) -> tuple[str, ...]:
        """Importable images directly inside this directory."""
        return tuple(name for name in self.files if is_image_file(name))

    @property
    def has_images(self) -> bool:
        return any(is_image_file(name) for name in self.files)

    def subdirectories(self) -> tuple[DirectoryNode, ...]:
        """Child directories that can hold pages (hidden and junk excluded)."""
        return tuple(
            child
            for child in self.children
            if not is_hidden(child.name) and not is_junk_dir(child.name)
        )

    def iter_image_paths(self, recursive: bool = True) -> Iterator[Path]:
        """Yield image paths, this directory first, then subdirectories in name order."""
        for name in self.image_files:
            yield self.path / name
        if recursive:
            for child in self.subdirectories():
                yield from child.iter_image_paths(recursive=True)


def snapshot_tree(root: Path, name: str | None = None) -> DirectoryNode:
    """Take a snapshot of the directory tree under ``root``.

    Symlinked directories are not followed.

    Args:
        root: Directory to snapshot
        name: Label for the root node; defaults to the directory's own name.
            Temporary extraction directories are labelled with the download name.

    Returns:
        Root DirectoryNode
    """
    return _snapshot(root, name if name is not None else root.name)


def _snapshot(path: Path, name: str) -> DirectoryNode:
    files: list[str] = []
    children: list[DirectoryNode] = []
    try:
        with os.scandir(path) as entries:
            for entry in entries:
                try:
                    if entry.is_dir(follow_symlinks=False):
                        children.append(_snapshot(Path(entry.path), entry.name))
                    elif entry.is_file():
                        files.append(entry.name)
                except OSError as exc:
                    logger.warning("Skipping unreadable entry", path=entry.path, error=str(exc))
    except OSError as exc:
        logger.warning("Cannot list directory", path=str(path), error=str(exc))

    return DirectoryNode(
        name=name,
        path=path,
        files=tuple(sorted(files)),
        children=tuple(sorted(children, key=lambda node: node.name)),
    )


def tree_from_mapping(
    name: str,
    layout: Mapping[str, Any] | list[str],
    base: Path = Path("/downloads"),
) -> DirectoryNode:
    """Build a snapshot from a nested mapping instead of the filesystem.

    A mapping value that is a dict or list is a subdirectory, anything else is a
    file. A list lists the file names of a leaf directory.

    Example:
        ```python
        tree_from_mapping("Series", {"Vol 1": ["001.jpg"], "cover.jpg": None})
        ```
    """
    path = base / name
    if isinstance(layout, list):
        return DirectoryNode(name=name, path=path, files=tuple(sorted(layout)))

    files: list[str] = []
    children: list[DirectoryNode] = []
    for key, value in layout.items():
        if isinstance(value, (dict, list)):
            children.append(tree_from_mapping(key, value, base=path))
        else:
            files.append(key)
    return DirectoryNode(
        name=name,
        path=path,
        files=tuple(sorted(files)),
        children=tuple(sorted(children, key=lambda node: node.name)),
    )
