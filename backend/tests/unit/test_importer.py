"""Tests for copying volumes into the canonical library layout."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from mangashelf.core.importing import importer
from mangashelf.core.importing.importer import (
    collect_pages,
    import_volume,
    page_name_width,
    volume_numbers_on_disk,
    volume_target_dir,
)
from mangashelf.core.utils import manga_dir_name, sanitize_title

MakePages = Callable[[Path, list[str]], list[Path]]


def read_volume(target: Path) -> dict[str, bytes]:
    return {path.name: path.read_bytes() for path in sorted(target.iterdir())}


def test_volume_target_dir(tmp_path: Path) -> None:
    """Test the canonical volume path."""
    assert volume_target_dir(tmp_path, "Berserk", 30002, 3) == tmp_path / "Berserk [id-30002]" / "v03"
    assert volume_target_dir(tmp_path, "Berserk", 30002, 112).name == "v112"


def test_manga_dir_name_sanitizes_title() -> None:
    """Test titles with path separators still make one directory name."""
    assert manga_dir_name("AC/DC: Live", 5) == "AC DC: Live [id-5]"
    assert sanitize_title("  ..  ") == "Untitled"
    assert sanitize_title("Yotsuba&!") == "Yotsuba&!"


def test_import_volume_copies_in_page_order(tmp_path: Path, make_pages: MakePages) -> None:
    """Test pages are copied in reading order and renamed sequentially."""
    source = tmp_path / "downloads" / "Berserk v01"
    make_pages(source, ["003.jpg", "001.jpg", "002.png", "004.JPG"])
    library = tmp_path / "library"

    outcome = import_volume(source, "Berserk", 30002, 1, library)

    assert outcome.status == "imported"
    assert outcome.ok
    assert outcome.page_count == 4
    assert outcome.target == library / "Berserk [id-30002]" / "v01"
    assert read_volume(outcome.target) == {
        "001.jpg": b"001.jpg",
        "002.png": b"002.png",
        "003.jpg": b"003.jpg",
        "004.jpg": b"004.JPG",
    }


def test_import_volume_is_idempotent(tmp_path: Path, make_pages: MakePages) -> None:
    """Test a second import leaves the target untouched and still succeeds."""
    source = tmp_path / "downloads" / "Berserk v01"
    make_pages(source, ["001.jpg", "002.jpg"])
    library = tmp_path / "library"

    first = import_volume(source, "Berserk", 30002, 1, library)
    before = read_volume(first.target)

    # New pages in the source must not be copied on the second call
    make_pages(source, ["003.jpg"])
    second = import_volume(source, "Berserk", 30002, 1, library)

    assert first.status == "imported"
    assert second.status == "already_imported"
    assert second.ok
    assert read_volume(second.target) == before


def test_import_volume_no_images(tmp_path: Path, make_pages: MakePages) -> None:
    """Test a folder without images fails and creates nothing."""
    source = tmp_path / "downloads" / "Berserk v01"
    make_pages(source, ["readme.txt", ".001.jpg", "Thumbs.db"])
    library = tmp_path / "library"

    outcome = import_volume(source, "Berserk", 30002, 1, library)

    assert outcome.status == "failed"
    assert not outcome.ok
    assert outcome.reason == "no image files found"
    assert not outcome.target.exists()


def test_import_volume_skips_hidden_and_non_images(tmp_path: Path, make_pages: MakePages) -> None:
    """Test hidden files and non-image files are never copied."""
    source = tmp_path / "downloads" / "Berserk v01"
    make_pages(source, ["001.jpg", "._001.jpg", "info.nfo", "002.webp"])

    outcome = import_volume(source, "Berserk", 30002, 1, tmp_path / "library")

    assert outcome.page_count == 2
    assert read_volume(outcome.target) == {"001.jpg": b"001.jpg", "002.webp": b"002.webp"}


def test_import_volume_chapter_subfolders_do_not_interleave(
    tmp_path: Path, make_pages: MakePages
) -> None:
    """Test chapter subfolders are copied one after the other."""
    source = tmp_path / "downloads" / "Berserk v01"
    make_pages(source / "Chapter 2", ["c2_001.jpg", "c2_002.jpg"])
    make_pages(source / "Chapter 1", ["c1_002.jpg", "c1_001.jpg"])

    outcome = import_volume(source, "Berserk", 30002, 1, tmp_path / "library")

    assert read_volume(outcome.target) == {
        "001.jpg": b"c1_001.jpg",
        "002.jpg": b"c1_002.jpg",
        "003.jpg": b"c2_001.jpg",
        "004.jpg": b"c2_002.jpg",
    }


def test_import_volume_non_recursive(tmp_path: Path, make_pages: MakePages) -> None:
    """Test loose pages are imported without the volume subfolders beside them."""
    source = tmp_path / "downloads" / "Berserk"
    make_pages(source, ["001.jpg", "002.jpg"])
    make_pages(source / "Vol 2", ["001.jpg"])

    outcome = import_volume(source, "Berserk", 30002, 1, tmp_path / "library", recursive=False)

    assert outcome.page_count == 2
    assert sorted(path.name for path in outcome.target.iterdir()) == ["001.jpg", "002.jpg"]


def test_import_volume_round_trip(tmp_path: Path, make_pages: MakePages) -> None:
    """Test N source images give N targets with strictly increasing names."""
    names = [f"DLRAW.TO_{index}.jpg" for index in range(1, 26)]
    source = tmp_path / "downloads" / "Berserk v02"
    make_pages(source, list(reversed(names)))

    outcome = import_volume(source, "Berserk", 30002, 2, tmp_path / "library")

    copied = sorted(outcome.target.iterdir())
    assert len(copied) == len(names)
    assert [path.name for path in copied] == [f"{index:03d}.jpg" for index in range(1, 26)]
    assert [path.read_bytes().decode() for path in copied] == names


def test_import_volume_leaves_no_staging_directory(tmp_path: Path, make_pages: MakePages) -> None:
    """Test the staging directory is renamed into place."""
    source = tmp_path / "downloads" / "Berserk v01"
    make_pages(source, ["001.jpg"])
    library = tmp_path / "library"

    import_volume(source, "Berserk", 30002, 1, library)

    assert [path.name for path in (library / "Berserk [id-30002]").iterdir()] == ["v01"]


def test_import_volume_copy_failure(
    tmp_path: Path, make_pages: MakePages, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Test a copy error fails the volume and removes the partial copy."""
    source = tmp_path / "downloads" / "Berserk v01"
    make_pages(source, ["001.jpg", "002.jpg"])
    library = tmp_path / "library"

    def fail_copy(src: Path, dst: Path) -> None:
        raise OSError("No space left on device")

    monkeypatch.setattr(importer.shutil, "copyfile", fail_copy)

    outcome = import_volume(source, "Berserk", 30002, 1, library)

    assert outcome.status == "failed"
    assert outcome.reason is not None
    assert outcome.reason.startswith("copy failed")
    assert outcome.page_count == 2
    assert not outcome.target.exists()
    assert list((library / "Berserk [id-30002]").iterdir()) == []


def test_page_name_width() -> None:
    """Test page names widen to four digits at 1000 pages."""
    assert page_name_width(1) == 3
    assert page_name_width(999) == 3
    assert page_name_width(1000) == 4


def test_collect_pages_empty_directory(tmp_path: Path) -> None:
    """Test an empty volume folder has no pages."""
    assert collect_pages(tmp_path) == []


def test_volume_numbers_on_disk(tmp_path: Path) -> None:
    """Test only vNN directories count as imported volumes."""
    manga_dir = tmp_path / "Berserk [id-30002]"
    (manga_dir / "v01").mkdir(parents=True)
    (manga_dir / "v03").mkdir()
    (manga_dir / "notes").mkdir()
    (manga_dir / ".v04.importing-abcd1234").mkdir()
    (manga_dir / "v05").write_text("not a directory")

    assert volume_numbers_on_disk(tmp_path, "Berserk", 30002) == {1, 3}
    assert volume_numbers_on_disk(tmp_path, "Vagabond", 656) == set()
