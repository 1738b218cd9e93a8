"""Internal dataclass models for the import engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Literal


class VolumePattern(StrEnum):
    """Folder-name patterns, in match priority order."""

    KANJI_DAI_KAN = "dai_kan"  # 第3巻
    KANJI_KAN = "kan"  # 3巻
    FULLWIDTH_PARENS = "fullwidth_parens"  # （3）
    PARENS = "parens"  # (3)
    VOL = "vol"  # Vol.3, Volume 3
    V_PREFIX = "v_prefix"  # v03
    UNDERSCORE_SUFFIX = "underscore_suffix"  # Title_03
    CJK_SUFFIX = "cjk_suffix"  # 進撃の巨人3
    BRACKETS = "brackets"  # [03], [v03]
    TRAILING_NUMBER = "trailing_number"  # Title 03

    # Not a folder-name pattern: number handed out by the sequential fallback
    SEQUENTIAL = "sequential"


@dataclass(frozen=True)
class VolumeMatch:
    """A volume number read from a folder name (or one of its ancestors)."""

    number: int
    pattern: VolumePattern
    source_name: str  # The name that actually matched


@dataclass(frozen=True)
class VolumeFolder:
    """A directory that directly contains a volume's page images."""

    path: Path
    name: str
    # Ancestor directory names, nearest first, up to and including the tree root
    ancestors: tuple[str, ...] = ()
    page_count: int = 0
    # True when the folder also has volume subfolders; only its direct images belong to it
    loose_pages: bool = False


@dataclass(frozen=True)
class VolumeCandidate:
    """A volume folder whose number was resolved from its name."""

    volume_number: int
    path: Path
    pattern: VolumePattern
    page_count: int
    ancestors: tuple[str, ...] = ()
    loose_pages: bool = False


@dataclass(frozen=True)
class AssignedVolume:
    """Final (volume number, folder) pair produced for one batch."""

    volume_number: int
    path: Path
    pattern: VolumePattern
    loose_pages: bool = False


@dataclass
class AssignmentResult:
    """Volume assignment for one batch, with everything that was left out."""

    volumes: list[AssignedVolume] = field(default_factory=list)
    # Numbers skipped because the library already has them
    already_present: list[int] = field(default_factory=list)
    # Unnumbered folders dropped because other folders in the batch were numbered
    ambiguous: list[Path] = field(default_factory=list)
    # Duplicate candidates that lost, with the deciding rule
    rejected: list[tuple[Path, str]] = field(default_factory=list)


ImportStatus = Literal["imported", "already_imported", "failed"]


@dataclass(frozen=True)
class ImportOutcome:
    """Result of importing one volume into the library."""

    status: ImportStatus
    volume_number: int
    target: Path
    page_count: int = 0
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != "failed"


@dataclass
class ImportPassResult:
    """Summary of one full import pass."""

    imported: int = 0
    failed: int = 0
    skipped: int = 0
    duration_seconds: float = 0.0
    errors: list[str] = field(default_factory=list)

    def merge(self, other: ImportPassResult) -> None:
        self.imported += other.imported
        self.failed += other.failed
        self.skipped += other.skipped
        self.errors.extend(other.errors)

    def as_dict(self) -> dict[str, int | float | list[str]]:
        return {
            "imported": self.imported,
            "failed": self.failed,
            "skipped": self.skipped,
            "duration_seconds": round(self.duration_seconds, 3),
            "errors": list(self.errors),
        }


@dataclass
class ImportHeuristics:
    """Tunable thresholds for the import heuristics.

    The defaults are the values downstream ordering depends on; change them only
    through settings.
    """

    # Page counts within this fraction of the larger count are a tie
    duplicate_page_tolerance: float = 0.05
    # Largest N-M gap read as a two-page spread
    spread_max_gap: int = 2
    # Above this share of unnumbered pages, sort the volume by filename
    unparseable_page_ratio: float = 0.5
