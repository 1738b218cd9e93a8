"""Reading-order sort for page image files.

Page names from scene groups carry watermark prefixes, single-letter page
markers, spread pages ("004-005"), sub-pages ("012a") and inconsistent digit
padding. Each name is parsed into a SortKey and ordered by it; a volume whose
names are mostly unparseable falls back to plain filename order.
"""

from __future__ import annotations

import math
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

import structlog

logger = structlog.get_logger("mangashelf.importing.page_sort")

PREFIX_SEPARATORS = ("_", "-", ".", " ")

_LETTER_PAGE = re.compile(r"^(\d+)-?([A-Za-z])$", re.ASCII)
_NUMBER_PAIR = re.compile(r"^(\d+)-(\d+)$", re.ASCII)
_NUMBER = re.compile(r"^(\d+)$", re.ASCII)
_DIGIT_RUN = re.compile(r"\d+", re.ASCII)
_PAGE_MARKER = re.compile(r"^[A-Za-z](?=\d)", re.ASCII)
_TOKEN_SPLIT = re.compile(r"[_\s]+")


@dataclass(frozen=True)
class NumberKey:
    """A plain page number (also used for a spread, keyed on its first page)."""

    number: int


@dataclass(frozen=True)
class NumberPairKey:
    """Primary/secondary numbering such as "012-7"."""

    number: int
    secondary: int


@dataclass(frozen=True)
class NumberLetterKey:
    """A sub-page after the main page, such as "012a"."""

    number: int
    letter: str


@dataclass(frozen=True)
class UnparseableKey:
    """No digits at all; sorts after every numbered page."""


SortKey = NumberKey | NumberPairKey | NumberLetterKey | UnparseableKey


def sort_tuple(key: SortKey, filename: str) -> tuple[float, int, int, str, str]:
    """Total order for sort keys.

    Primary number ascending, then numeric secondaries before letters (numbers
    compared numerically, letters lexicographically), then the filename.
    """
    if isinstance(key, NumberKey):
        return (key.number, 0, 0, "", filename)
    if isinstance(key, NumberPairKey):
        return (key.number, 0, key.secondary, "", filename)
    if isinstance(key, NumberLetterKey):
        return (key.number, 1, 0, key.letter.lower(), filename)
    return (math.inf, 0, 0, "", filename)


def _stem(filename: str) -> str:
    return os.path.splitext(filename)[0]


def detect_common_prefix(filenames: list[str]) -> str:
    """Find the prefix shared by every page name that is safe to strip.

    A shared prefix ending in a separator ("_", "-", ".", " ") is used whole.
    Otherwise trailing digits are dropped and the rest is used only if it is
    longer than one character, so "p0001"-style page markers are left alone.

    Args:
        filenames: Page filenames (extensions are ignored)

    Returns:
        Prefix to strip, or "" when there is none
    """
    if len(filenames) < 2:
        return ""

    prefix = os.path.commonprefix([_stem(name) for name in filenames])
    if not prefix:
        return ""
    if prefix.endswith(PREFIX_SEPARATORS):
        return prefix

    trimmed = prefix.rstrip("0123456789")
    return trimmed if len(trimmed) > 1 else ""


def parse_page_sort_key(
    filename: str,
    common_prefix: str = "",
    spread_max_gap: int = 2,
) -> SortKey:
    """Parse a page filename into its SortKey.

    Args:
        filename: Page filename, e.g. "DLRAW.TO_004-005.jpg"
        common_prefix: Prefix shared by the whole volume (see detect_common_prefix)
        spread_max_gap: Largest N-M gap read as a two-page spread

    Returns:
        SortKey for the page
    """
    name = _stem(filename)

    if common_prefix and name.lower().startswith(common_prefix.lower()):
        name = name[len(common_prefix) :]

    name = _PAGE_MARKER.sub("", name)

    segments = [segment for segment in _TOKEN_SPLIT.split(name) if segment]
    token = segments[-1] if segments else ""

    match = _LETTER_PAGE.match(token)
    if match:
        return NumberLetterKey(int(match.group(1)), match.group(2))

    match = _NUMBER_PAIR.match(token)
    if match:
        first, second = int(match.group(1)), int(match.group(2))
        if second > first and second - first <= spread_max_gap:
            return NumberKey(first)
        return NumberPairKey(first, second)

    match = _NUMBER.match(token)
    if match:
        return NumberKey(int(match.group(1)))

    # Last resort: the last digit run anywhere in the name
    runs = _DIGIT_RUN.findall(token) or _DIGIT_RUN.findall(name)
    if runs:
        return NumberKey(int(runs[-1]))

    return UnparseableKey()


PathT = TypeVar("PathT", str, Path)


def sort_image_files(
    files: list[PathT],
    spread_max_gap: int = 2,
    unparseable_page_ratio: float = 0.5,
) -> list[PathT]:
    """Sort a volume's page files into reading order.

    Keys are computed from base names only. When more than
    ``unparseable_page_ratio`` of the files have no digits at all, the key
    order is discarded and the whole volume is sorted by filename.

    Args:
        files: Filenames or paths of one volume's pages
        spread_max_gap: Largest N-M gap read as a two-page spread
        unparseable_page_ratio: Share of unparseable names that forces filename order

    Returns:
        New list in reading order, same element type as the input
    """
    if len(files) < 2:
        return list(files)

    names = [os.path.basename(str(item)) for item in files]
    prefix = detect_common_prefix(names)
    keys = [parse_page_sort_key(name, prefix, spread_max_gap) for name in names]

    unparseable = sum(1 for key in keys if isinstance(key, UnparseableKey))
    if unparseable / len(files) > unparseable_page_ratio:
        logger.debug(
            "Page names mostly unparseable, sorting by filename",
            pages=len(files),
            unparseable=unparseable,
        )
        order = sorted(range(len(files)), key=lambda i: names[i])
    else:
        order = sorted(range(len(files)), key=lambda i: sort_tuple(keys[i], names[i]))

    return [files[i] for i in order]
