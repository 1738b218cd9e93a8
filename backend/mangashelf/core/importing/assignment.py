"""Volume number assignment for a whole download."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable

import structlog

from mangashelf.core.importing.duplicates import resolve_duplicates
from mangashelf.core.importing.errors import AmbiguousVolumeNumber
from mangashelf.core.importing.models import (
    AssignedVolume,
    AssignmentResult,
    VolumeCandidate,
    VolumeFolder,
    VolumePattern,
)
from mangashelf.core.importing.volume_numbers import extract_volume_number_with_ancestors
from mangashelf.core.metrics import (
    ambiguous_folders_total,
    duplicate_candidates_rejected_total,
)

logger = structlog.get_logger("mangashelf.importing.assignment")


def _next_free(start: int, taken: set[int]) -> int:
    number = start
    while number in taken:
        number += 1
    return number


def assign_volume_numbers(
    folders: Iterable[VolumeFolder],
    existing_volume_numbers: Iterable[int] = (),
    duplicate_page_tolerance: float = 0.05,
) -> AssignmentResult:
    """Give every volume folder of a download its final volume number.

    Numbers come from folder names (with ancestor fallback). Competing folders
    for one number go through duplicate resolution. Numbers already in the
    library are skipped. Unnumbered folders are handled as follows:

    - all folders unnumbered: numbered 1, 2, 3... in folder-name order,
      skipping numbers already in the library;
    - exactly one unnumbered: it gets the smallest free number;
    - several unnumbered next to numbered ones: dropped and logged, never guessed.

    Args:
        folders: Volume folders from find_volume_folders()
        existing_volume_numbers: Numbers already imported for this manga
        duplicate_page_tolerance: Page-count tie threshold for duplicate resolution

    Returns:
        AssignmentResult with volumes sorted by number
    """
    folders = list(folders)
    existing = set(existing_volume_numbers)
    result = AssignmentResult()

    resolved: list[VolumeCandidate] = []
    unresolved: list[VolumeFolder] = []
    for folder in folders:
        match = extract_volume_number_with_ancestors(folder.name, folder.ancestors)
        if match is None:
            unresolved.append(folder)
            continue
        resolved.append(
            VolumeCandidate(
                volume_number=match.number,
                path=folder.path,
                pattern=match.pattern,
                page_count=folder.page_count,
                ancestors=folder.ancestors,
                loose_pages=folder.loose_pages,
            )
        )

    groups: dict[int, list[VolumeCandidate]] = defaultdict(list)
    for candidate in resolved:
        groups[candidate.volume_number].append(candidate)

    for number in sorted(groups):
        group = groups[number]
        winner = group[0]
        if len(group) > 1:
            winner, rejected = resolve_duplicates(group, tolerance=duplicate_page_tolerance)
            duplicate_candidates_rejected_total.inc(len(rejected))
            result.rejected.extend((loser.path, reason) for loser, reason in rejected)

        if number in existing:
            logger.info(
                "Volume already in library, skipping",
                volume_number=number,
                path=str(winner.path),
            )
            result.already_present.append(number)
            continue

        result.volumes.append(
            AssignedVolume(
                volume_number=number,
                path=winner.path,
                pattern=winner.pattern,
                loose_pages=winner.loose_pages,
            )
        )

    if unresolved:
        if not resolved:
            taken = set(existing)
            for folder in sorted(unresolved, key=lambda f: (f.name, str(f.path))):
                number = _next_free(1, taken)
                taken.add(number)
                result.volumes.append(
                    AssignedVolume(
                        volume_number=number,
                        path=folder.path,
                        pattern=VolumePattern.SEQUENTIAL,
                        loose_pages=folder.loose_pages,
                    )
                )
            logger.info(
                "No volume numbers in folder names, numbered sequentially",
                count=len(unresolved),
                skipped_existing=sorted(existing),
            )
        elif len(unresolved) == 1:
            folder = unresolved[0]
            number = _next_free(1, set(groups) | existing)
            result.volumes.append(
                AssignedVolume(
                    volume_number=number,
                    path=folder.path,
                    pattern=VolumePattern.SEQUENTIAL,
                    loose_pages=folder.loose_pages,
                )
            )
            logger.info(
                "Unnumbered folder given the first free volume number",
                path=str(folder.path),
                volume_number=number,
            )
        else:
            error = AmbiguousVolumeNumber([folder.path for folder in unresolved])
            ambiguous_folders_total.inc(len(unresolved))
            result.ambiguous.extend(error.paths)
            logger.warning(
                "Ambiguous volume numbers, folders skipped for manual import",
                error=str(error),
                paths=[str(path) for path in error.paths],
            )

    result.volumes.sort(key=lambda volume: volume.volume_number)
    return result
