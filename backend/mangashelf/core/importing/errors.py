"""Import engine error taxonomy."""

from __future__ import annotations

from pathlib import Path


class ImportEngineError(Exception):
    """Base class for import engine failures."""


class ExtractionError(ImportEngineError):
    """An archive could not be extracted.

    Covers unsupported formats, corrupt archives, a missing archiver executable,
    archiver timeouts and non-zero exits.
    """

    def __init__(self, archive: Path | str, message: str) -> None:
        self.archive = Path(archive)
        self.message = message
        super().__init__(f"{self.archive.name}: {message}")


class NoVolumeFoldersDetected(ImportEngineError):
    """A download contains no directory with page images."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        super().__init__(f"no volume folders detected in {self.path}")


class NoImageFilesInVolume(ImportEngineError):
    """A volume folder turned out to hold no importable images."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        super().__init__("no image files found")


class AmbiguousVolumeNumber(ImportEngineError):
    """Several folders have no volume number while others do.

    The folders are skipped for manual intervention, never guessed.
    """

    def __init__(self, paths: list[Path]) -> None:
        self.paths = list(paths)
        names = ", ".join(p.name for p in self.paths)
        super().__init__(f"cannot assign volume numbers to {len(self.paths)} folders: {names}")
