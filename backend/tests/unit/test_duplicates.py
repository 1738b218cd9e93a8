"""Tests for duplicate volume candidate resolution."""

from __future__ import annotations

import itertools
from pathlib import Path

import pytest

from mangashelf.core.importing.duplicates import (
    batch_range_width,
    compare_candidates,
    resolve_duplicates,
)
from mangashelf.core.importing.models import VolumeCandidate, VolumePattern


def candidate(
    path: str,
    page_count: int,
    pattern: VolumePattern = VolumePattern.VOL,
    ancestors: tuple[str, ...] = ("Berserk",),
) -> VolumeCandidate:
    return VolumeCandidate(
        volume_number=5,
        path=Path(path),
        pattern=pattern,
        page_count=page_count,
        ancestors=ancestors,
    )


def test_more_pages_wins() -> None:
    """Test a 180-page candidate beats a 20-page one."""
    full = candidate("/downloads/Berserk/Vol 5", 180)
    preview = candidate("/downloads/Berserk/Vol.5 preview", 20)

    winner, rejected = resolve_duplicates([preview, full])

    assert winner is full
    assert len(rejected) == 1
    assert rejected[0][0] is preview
    assert rejected[0][1] == "fewer pages (20 vs 180)"


def test_page_counts_within_tolerance_are_tied() -> None:
    """Test page counts within 5% fall through to the batch range rule."""
    ranged = candidate(
        "/downloads/b/Vol 5", 96, ancestors=("Berserk v01-10", "downloads")
    )
    single = candidate("/downloads/a/Vol 5", 100, ancestors=("Berserk v05",))

    winner, rejected = resolve_duplicates([single, ranged])

    assert winner is ranged
    assert rejected[0][1] == "narrower batch range (0 vs 10)"


def test_page_counts_outside_tolerance_are_not_tied() -> None:
    """Test that a gap above 5% is decided by page count."""
    ranged = candidate("/downloads/b/Vol 5", 94, ancestors=("Berserk v01-10",))
    single = candidate("/downloads/a/Vol 5", 100)

    winner, _ = resolve_duplicates([ranged, single])

    assert winner is single


def test_custom_tolerance() -> None:
    """Test the tie threshold can be tuned."""
    ranged = candidate("/downloads/b/Vol 5", 94, ancestors=("Berserk v01-10",))
    single = candidate("/downloads/a/Vol 5", 100)

    winner, _ = resolve_duplicates([ranged, single], tolerance=0.1)

    assert winner is ranged


def test_dai_kan_pattern_preferred() -> None:
    """Test 第N巻 naming wins when pages and batch ranges are tied."""
    kanji = candidate("/downloads/z/第5巻", 100, pattern=VolumePattern.KANJI_DAI_KAN)
    latin = candidate("/downloads/a/Vol 5", 100)

    winner, rejected = resolve_duplicates([latin, kanji])

    assert winner is kanji
    assert rejected[0][1] == "pattern vol loses to dai_kan"


def test_path_order_is_final_tiebreak() -> None:
    """Test that identical candidates are ordered by path."""
    a = candidate("/downloads/a/Vol 5", 100)
    b = candidate("/downloads/b/Vol 5", 100)

    winner, rejected = resolve_duplicates([b, a])

    assert winner is a
    assert rejected[0][1] == "path order tiebreak"


def test_resolution_does_not_depend_on_input_order() -> None:
    """Test every permutation of the input picks the same winner."""
    candidates = [
        candidate("/downloads/c/Vol 5", 100),
        candidate("/downloads/a/Vol 5", 98),
        candidate("/downloads/b/第5巻", 97, pattern=VolumePattern.KANJI_DAI_KAN),
        candidate("/downloads/d/Vol 5", 40),
    ]

    winners = {
        resolve_duplicates(list(order))[0].path
        for order in itertools.permutations(candidates)
    }

    assert winners == {Path("/downloads/b/第5巻")}


def test_all_losers_are_reported() -> None:
    """Test every non-winning candidate is returned with a reason."""
    candidates = [
        candidate("/downloads/a/Vol 5", 180),
        candidate("/downloads/b/Vol 5", 20),
        candidate("/downloads/c/Vol 5", 10),
    ]

    winner, rejected = resolve_duplicates(candidates)

    assert winner.path == Path("/downloads/a/Vol 5")
    assert {loser.path for loser, _ in rejected} == {
        Path("/downloads/b/Vol 5"),
        Path("/downloads/c/Vol 5"),
    }
    assert all(reason.startswith("fewer pages") for _, reason in rejected)


def test_resolve_duplicates_requires_candidates() -> None:
    """Test that an empty candidate list is rejected."""
    with pytest.raises(ValueError):
        resolve_duplicates([])


def test_batch_range_width() -> None:
    """Test the batch range is read from the nearest three ancestors."""
    assert batch_range_width(candidate("/x", 1, ancestors=("Berserk v01-10",))) == 10
    assert batch_range_width(candidate("/x", 1, ancestors=("a", "b", "V3-5 batch"))) == 3
    assert batch_range_width(candidate("/x", 1, ancestors=("a", "b", "c", "v01-10"))) == 0
    assert batch_range_width(candidate("/x", 1, ancestors=("Berserk v05",))) == 0


def test_compare_candidates_is_antisymmetric() -> None:
    """Test that swapping the arguments flips the comparison."""
    a = candidate("/downloads/a/Vol 5", 180)
    b = candidate("/downloads/b/Vol 5", 20)

    assert compare_candidates(a, b) == -1
    assert compare_candidates(b, a) == 1
    assert compare_candidates(a, a) == 0
