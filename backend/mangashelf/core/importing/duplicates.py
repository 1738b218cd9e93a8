"""Duplicate resolution for folders claiming the same volume number."""

from __future__ import annotations

import re
from functools import cmp_to_key

import structlog

from mangashelf.core.importing.models import VolumeCandidate, VolumePattern

logger = structlog.get_logger("mangashelf.importing.duplicates")

BATCH_RANGE_PATTERN = re.compile(r"v(\d+)-(\d+)", re.ASCII | re.IGNORECASE)

# Ancestor levels searched for a batch range such as "v01-10"
BATCH_RANGE_DEPTH = 3


def batch_range_width(candidate: VolumeCandidate) -> int:
    """Width of the batch range named by the nearest ancestor carrying one.

    "Series v01-10" gives 10. Candidates without a range give 0.
    """
    for name in candidate.ancestors[:BATCH_RANGE_DEPTH]:
        match = BATCH_RANGE_PATTERN.search(name)
        if match is None:
            continue
        start, end = int(match.group(1)), int(match.group(2))
        if end >= start:
            return end - start + 1
    return 0


def _pages_tied(a: int, b: int, tolerance: float) -> bool:
    larger = max(a, b)
    return abs(a - b) <= tolerance * larger


def compare_candidates(
    a: VolumeCandidate,
    b: VolumeCandidate,
    tolerance: float = 0.05,
) -> int:
    """Order two candidates for the same volume; the smaller one wins.

    1. More pages, unless the counts are within ``tolerance`` of the larger one.
    2. Wider batch range in an ancestor folder name.
    3. 第N巻 naming over any other pattern.
    4. Path, lexicographically.
    """
    if not _pages_tied(a.page_count, b.page_count, tolerance):
        return -1 if a.page_count > b.page_count else 1

    width_a, width_b = batch_range_width(a), batch_range_width(b)
    if width_a != width_b:
        return -1 if width_a > width_b else 1

    kanji_a = a.pattern == VolumePattern.KANJI_DAI_KAN
    kanji_b = b.pattern == VolumePattern.KANJI_DAI_KAN
    if kanji_a != kanji_b:
        return -1 if kanji_a else 1

    path_a, path_b = str(a.path), str(b.path)
    if path_a != path_b:
        return -1 if path_a < path_b else 1
    return 0


def rejection_reason(
    winner: VolumeCandidate,
    loser: VolumeCandidate,
    tolerance: float = 0.05,
) -> str:
    """Name the rule that decided between ``winner`` and ``loser``."""
    if not _pages_tied(winner.page_count, loser.page_count, tolerance):
        return f"fewer pages ({loser.page_count} vs {winner.page_count})"
    width_winner, width_loser = batch_range_width(winner), batch_range_width(loser)
    if width_winner != width_loser:
        return f"narrower batch range ({width_loser} vs {width_winner})"
    if winner.pattern != loser.pattern and winner.pattern == VolumePattern.KANJI_DAI_KAN:
        return f"pattern {loser.pattern} loses to {winner.pattern}"
    return "path order tiebreak"


def resolve_duplicates(
    candidates: list[VolumeCandidate],
    tolerance: float = 0.05,
) -> tuple[VolumeCandidate, list[tuple[VolumeCandidate, str]]]:
    """Pick one winner among candidates sharing a volume number.

    The outcome does not depend on input order.

    Args:
        candidates: Non-empty list of candidates with the same volume number
        tolerance: Page-count tie threshold, as a fraction of the larger count

    Returns:
        (winner, [(rejected candidate, reason), ...])
    """
    if not candidates:
        raise ValueError("resolve_duplicates() needs at least one candidate")

    ordered = sorted(candidates, key=lambda c: str(c.path))
    ordered.sort(key=cmp_to_key(lambda a, b: compare_candidates(a, b, tolerance)))
    winner, losers = ordered[0], ordered[1:]

    rejected: list[tuple[VolumeCandidate, str]] = []
    for loser in losers:
        reason = rejection_reason(winner, loser, tolerance)
        rejected.append((loser, reason))
        logger.info(
            "Duplicate volume candidate rejected",
            volume_number=winner.volume_number,
            rejected_path=str(loser.path),
            rejected_pages=loser.page_count,
            winner_path=str(winner.path),
            winner_pages=winner.page_count,
            reason=reason,
        )

    return winner, rejected
