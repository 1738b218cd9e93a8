"""Volume number extraction from folder names."""

from __future__ import annotations

import re
import unicodedata

import structlog

from mangashelf.core.importing.models import VolumeMatch, VolumePattern

logger = structlog.get_logger("mangashelf.importing.volume_numbers")

# Hiragana, katakana, CJK ideographs (incl. extension A) and hangul syllables
_CJK = r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af]"

# First match wins; the order is part of the numbering contract
VOLUME_PATTERNS: tuple[tuple[VolumePattern, re.Pattern[str]], ...] = (
    (VolumePattern.KANJI_DAI_KAN, re.compile(r"第(\d+)巻", re.ASCII)),
    (VolumePattern.KANJI_KAN, re.compile(r"(\d+)巻", re.ASCII)),
    (VolumePattern.FULLWIDTH_PARENS, re.compile(r"（\s*(\d+)\s*）", re.ASCII)),
    (VolumePattern.PARENS, re.compile(r"\(\s*(\d+)\s*\)", re.ASCII)),
    (VolumePattern.VOL, re.compile(r"vol(?:ume)?\.?\s*(\d+)", re.ASCII | re.IGNORECASE)),
    (VolumePattern.V_PREFIX, re.compile(r"(?<![a-zA-Z])v(\d+)", re.ASCII | re.IGNORECASE)),
    (VolumePattern.UNDERSCORE_SUFFIX, re.compile(r"_(\d+)$", re.ASCII)),
    # Up to three trailing non-digits, e.g. "巨人3)" or "巨人3 "
    (VolumePattern.CJK_SUFFIX, re.compile(_CJK + r"(\d+)\D{0,3}$", re.ASCII)),
    (VolumePattern.BRACKETS, re.compile(r"\[v?(\d+)\]", re.ASCII | re.IGNORECASE)),
    (VolumePattern.TRAILING_NUMBER, re.compile(r"(\d+)\s*$", re.ASCII)),
)

_FULLWIDTH_TABLE = str.maketrans(
    {
        **{0xFF10 + i: ord("0") + i for i in range(10)},
        **{0xFF21 + i: ord("A") + i for i in range(26)},
        **{0xFF41 + i: ord("a") + i for i in range(26)},
        0x3000: ord(" "),
    }
)


def normalize_folder_name(name: str) -> str:
    """Normalize a folder name before pattern matching.

    NFC-normalizes, maps fullwidth digits, Latin letters and the ideographic
    space to ASCII, and trims.
    """
    return unicodedata.normalize("NFC", name).translate(_FULLWIDTH_TABLE).strip()


def extract_volume_number(name: str) -> VolumeMatch | None:
    """Read a volume number from a single folder name.

    Patterns are tried in priority order; a pattern whose capture is 0 does not
    count as a match.

    Args:
        name: Folder name (e.g., "第3巻", "Vol.12", "Some Manga (05)")

    Returns:
        VolumeMatch or None when no pattern yields a positive number
    """
    normalized = normalize_folder_name(name)
    if not normalized:
        return None

    for pattern_name, pattern in VOLUME_PATTERNS:
        match = pattern.search(normalized)
        if match is None:
            continue
        number = int(match.group(1))
        if number > 0:
            return VolumeMatch(number=number, pattern=pattern_name, source_name=name)

    return None


def extract_volume_number_with_ancestors(
    name: str,
    ancestors: tuple[str, ...] = (),
    max_depth: int = 2,
) -> VolumeMatch | None:
    """Read a volume number from a folder name, falling back to its ancestors.

    Tries the folder itself and up to two ancestors. ``ancestors``
    stop at the download root, so the walk never leaves the download.

    Args:
        name: Folder name
        ancestors: Ancestor names, nearest first
        max_depth: How many ancestor levels to try

    Returns:
        The first VolumeMatch found, or None
    """
    for depth, candidate in enumerate((name, *ancestors[:max_depth])):
        match = extract_volume_number(candidate)
        if match is not None:
            if depth > 0:
                logger.debug(
                    "Volume number taken from ancestor",
                    folder=name,
                    ancestor=candidate,
                    volume_number=match.number,
                )
            return match
    return None
