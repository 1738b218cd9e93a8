"""Archive extraction for completed downloads.

Turns a download (an archive, a directory of archives or a plain directory)
into a plain directory tree of images. Zip archives are unpacked in-process;
RAR goes through ``bsdtar`` and 7z through ``7z``, both bounded by a timeout.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from types import TracebackType

import rarfile
import structlog

from mangashelf.core.importing.errors import ExtractionError
from mangashelf.core.metrics import extraction_failures_total
from mangashelf.core.utils import (
    RAR_EXTENSIONS,
    SEVEN_ZIP_EXTENSIONS,
    ZIP_EXTENSIONS,
    is_archive,
    is_junk_dir,
    is_junk_file,
)

logger = structlog.get_logger("mangashelf.importing.extractor")

DEFAULT_ARCHIVER_TIMEOUT = 120
TEMP_DIR_PREFIX = "extract-"

SEVEN_ZIP_MAGIC = b"7z\xbc\xaf\x27\x1c"

# Zip flag bit 11: member names are UTF-8
_ZIP_UTF8_FLAG = 0x800


@dataclass
class ExtractionResult:
    """Where to import from, and the temporary directory to delete afterwards.

    Use it as a context manager; the temporary directory is removed exactly once
    whichever way the block exits.
    """

    import_path: Path
    temp_dir: Path | None = None
    error: str | None = None
    # Name the tree root should carry (the download name, not the temp dir name)
    label: str | None = None
    _cleaned: bool = field(default=False, init=False, repr=False)

    @property
    def ok(self) -> bool:
        return self.error is None

    def cleanup(self) -> None:
        """Remove the temporary directory, if any. Safe to call repeatedly."""
        if self._cleaned or self.temp_dir is None:
            self._cleaned = True
            return
        self._cleaned = True
        shutil.rmtree(self.temp_dir, ignore_errors=True)
        if self.temp_dir.exists():
            logger.error("Failed to clean up temp dir", temp_dir=str(self.temp_dir))
        else:
            logger.debug("Temp dir removed", temp_dir=str(self.temp_dir))

    def __enter__(self) -> ExtractionResult:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.cleanup()


def _sniff_format(archive: Path) -> str:
    """Detect the real archive format; the extension is only the last resort."""
    if zipfile.is_zipfile(archive):
        return "zip"
    if rarfile.is_rarfile(archive):
        return "rar"
    try:
        with archive.open("rb") as f:
            if f.read(len(SEVEN_ZIP_MAGIC)) == SEVEN_ZIP_MAGIC:
                return "7z"
    except OSError as exc:
        raise ExtractionError(archive, f"cannot read archive: {exc}") from exc

    suffix = archive.suffix.lower()
    if suffix in ZIP_EXTENSIONS:
        return "zip"
    if suffix in RAR_EXTENSIONS:
        return "rar"
    if suffix in SEVEN_ZIP_EXTENSIONS:
        return "7z"
    raise ExtractionError(archive, f"unsupported archive format: {suffix or '(none)'}")


def _zip_member_name(info: zipfile.ZipInfo) -> str:
    """Recover member names written in a legacy code page (common in JP archives)."""
    if info.flag_bits & _ZIP_UTF8_FLAG:
        return info.filename
    try:
        raw = info.filename.encode("cp437")
    except UnicodeEncodeError:
        return info.filename
    for encoding in ("utf-8", "cp932"):
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            continue
    return info.filename


def _extract_zip(archive: Path, destination: Path) -> None:
    root = destination.resolve()
    try:
        with zipfile.ZipFile(archive) as zf:
            for info in zf.infolist():
                name = _zip_member_name(info).replace("\\", "/")
                target = (root / name).resolve()
                if name.startswith("/") or not target.is_relative_to(root):
                    raise ExtractionError(archive, f"unsafe member path: {name}")
                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info) as src, target.open("wb") as dst:
                    shutil.copyfileobj(src, dst)
    except zipfile.BadZipFile as exc:
        raise ExtractionError(archive, f"corrupt zip archive: {exc}") from exc
    except OSError as exc:
        raise ExtractionError(archive, f"zip extraction failed: {exc}") from exc


def _run_archiver(command: list[str], archive: Path, timeout: float) -> None:
    try:
        completed = subprocess.run(
            command,
            capture_output=True,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError as exc:
        raise ExtractionError(archive, f"{command[0]} executable not found") from exc
    except subprocess.TimeoutExpired as exc:
        raise ExtractionError(archive, f"{command[0]} timed out after {timeout}s") from exc

    if completed.returncode != 0:
        stderr = (completed.stderr or b"").decode("utf-8", errors="replace").strip()
        raise ExtractionError(
            archive,
            f"{command[0]} exited with status {completed.returncode}: {stderr[-300:]}",
        )


def extract_archive(
    archive: Path,
    destination: Path,
    timeout: float = DEFAULT_ARCHIVER_TIMEOUT,
) -> None:
    """Extract one archive into ``destination``.

    Args:
        archive: Archive file (.zip, .cbz, .rar, .cbr, .7z)
        destination: Existing directory to extract into
        timeout: Seconds allowed for an external archiver

    Raises:
        ExtractionError: Unsupported or corrupt archive, missing archiver,
            archiver timeout or non-zero exit.
    """
    kind = _sniff_format(archive)
    destination.mkdir(parents=True, exist_ok=True)

    if kind == "zip":
        _extract_zip(archive, destination)
    elif kind == "rar":
        _run_archiver(["bsdtar", "-xf", str(archive), "-C", str(destination)], archive, timeout)
    else:
        _run_archiver(["7z", "x", f"-o{destination}", "-y", str(archive)], archive, timeout)

    logger.debug("Archive extracted", archive=str(archive), format=kind)


def _find_archives(directory: Path, recursive: bool) -> list[Path]:
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(directory):
        dirnames[:] = sorted(d for d in dirnames if not is_junk_dir(d))
        found.extend(Path(dirpath) / name for name in sorted(filenames) if is_archive(name))
        if not recursive:
            break
    return found


def extract_nested_archives(directory: Path, timeout: float = DEFAULT_ARCHIVER_TIMEOUT) -> int:
    """Extract archives found inside an extraction directory, one level deep.

    Each nested archive is extracted beside itself into a folder named after its
    stem and then deleted. Archives exposed by this step are left alone. A
    nested archive that fails is logged and kept; it never fails the download.

    Returns:
        Number of nested archives extracted
    """
    extracted = 0
    for archive in _find_archives(directory, recursive=True):
        target = archive.parent / archive.stem
        if target.exists() and not target.is_dir():
            target = archive.parent / f"{archive.stem}.extracted"
        try:
            extract_archive(archive, target, timeout=timeout)
        except ExtractionError as exc:
            logger.warning(
                "Nested archive extraction failed, skipping",
                archive=str(archive),
                error=exc.message,
            )
            continue
        archive.unlink()
        extracted += 1
    return extracted


def remove_junk(directory: Path) -> int:
    """Delete archiver and desktop leftovers (__MACOSX, .DS_Store, Thumbs.db, desktop.ini).

    Returns:
        Number of entries removed
    """
    removed = 0
    for dirpath, dirnames, filenames in os.walk(directory):
        for name in list(dirnames):
            if is_junk_dir(name):
                shutil.rmtree(Path(dirpath) / name, ignore_errors=True)
                dirnames.remove(name)
                removed += 1
        for name in filenames:
            if is_junk_file(name):
                (Path(dirpath) / name).unlink(missing_ok=True)
                removed += 1
    return removed


def _create_temp_dir(extract_root: Path) -> Path:
    extract_root.mkdir(parents=True, exist_ok=True)
    return Path(tempfile.mkdtemp(prefix=TEMP_DIR_PREFIX, dir=extract_root))


def extract_if_needed(
    source: Path,
    extract_root: Path,
    timeout: float = DEFAULT_ARCHIVER_TIMEOUT,
) -> ExtractionResult:
    """Normalize a download into a plain directory tree.

    - Single archive: extracted into a fresh temp directory.
    - Directory with top-level archives: each archive extracted into its own
      folder (named after the archive) inside one shared temp directory.
    - Plain directory: passed through unchanged, no temp directory.

    Nested archives are then extracted one level deep and junk entries removed.
    Failures do not raise; they are reported in ``error`` and the temp
    directory (if created) is still returned for the caller to clean up.

    Args:
        source: Completed download (file or directory)
        extract_root: Root for temporary extraction directories
        timeout: Seconds allowed for each external archiver run

    Returns:
        ExtractionResult, to be used as a context manager
    """
    if not source.exists():
        return ExtractionResult(import_path=source, error=f"source not found: {source}")

    if source.is_file():
        if not is_archive(source):
            return ExtractionResult(
                import_path=source,
                error=f"not an archive or directory: {source.name}",
            )
        archives = [source]
        label = source.stem
    else:
        archives = _find_archives(source, recursive=False)
        label = source.name
        if not archives:
            return ExtractionResult(import_path=source, label=label)

    temp_dir = _create_temp_dir(extract_root)
    result = ExtractionResult(import_path=temp_dir, temp_dir=temp_dir, label=label)

    logger.info(
        "Extracting download",
        source=str(source),
        archives=len(archives),
        temp_dir=str(temp_dir),
    )
    try:
        if source.is_file():
            extract_archive(source, temp_dir, timeout=timeout)
        else:
            for archive in archives:
                extract_archive(archive, temp_dir / archive.stem, timeout=timeout)
        nested = extract_nested_archives(temp_dir, timeout=timeout)
        junk = remove_junk(temp_dir)
    except ExtractionError as exc:
        extraction_failures_total.inc()
        logger.error(
            "Extraction failed",
            source=str(source),
            archive=str(exc.archive),
            error=exc.message,
        )
        result.import_path = source
        result.error = str(exc)
        return result

    logger.info(
        "Extraction finished",
        source=str(source),
        temp_dir=str(temp_dir),
        nested_archives=nested,
        junk_removed=junk,
    )
    return result
