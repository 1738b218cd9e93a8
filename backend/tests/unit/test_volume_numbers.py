"""Tests for volume number extraction from folder names."""

from __future__ import annotations

import pytest

from mangashelf.core.importing.models import VolumePattern
from mangashelf.core.importing.volume_numbers import (
    extract_volume_number,
    extract_volume_number_with_ancestors,
    normalize_folder_name,
)


class TestNormalizeFolderName:
    """Test normalize_folder_name."""

    def test_fullwidth_characters(self):
        """Test fullwidth digits, letters and spaces are mapped to ASCII."""
        assert normalize_folder_name("　ｖ０３　") == "v03"
        assert normalize_folder_name("ＶＯＬ１２") == "VOL12"


class TestExtractVolumeNumber:
    """Test extract_volume_number over the ordered pattern list."""

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("第3巻", 3),
            ("Vol.12", 12),
            ("Some Manga (05)", 5),
            ("Some Manga_12", 12),
        ],
    )
    def test_common_names(self, name: str, expected: int):
        """Test the everyday naming styles."""
        match = extract_volume_number(name)
        assert match is not None
        assert match.number == expected
        assert match.source_name == name

    def test_no_number(self):
        """Test that a name without a volume number gives None."""
        assert extract_volume_number("Some Manga") is None
        assert extract_volume_number("") is None
        assert extract_volume_number("   ") is None

    @pytest.mark.parametrize(
        ("name", "expected_number", "expected_pattern"),
        [
            ("進撃の巨人 第12巻", 12, VolumePattern.KANJI_DAI_KAN),
            ("ワンピース 7巻", 7, VolumePattern.KANJI_KAN),
            ("ドラゴンボール（4）", 4, VolumePattern.FULLWIDTH_PARENS),
            ("Berserk ( 2 )", 2, VolumePattern.PARENS),
            ("VOLUME 4", 4, VolumePattern.VOL),
            ("Vol 9", 9, VolumePattern.VOL),
            ("Chainsaw Man v12", 12, VolumePattern.V_PREFIX),
            ("[Group] Title v03 [Digital]", 3, VolumePattern.V_PREFIX),
            ("Title_03", 3, VolumePattern.UNDERSCORE_SUFFIX),
            ("進撃の巨人3", 3, VolumePattern.CJK_SUFFIX),
            ("Title [07]", 7, VolumePattern.BRACKETS),
            ("Title 07", 7, VolumePattern.TRAILING_NUMBER),
        ],
    )
    def test_patterns(self, name: str, expected_number: int, expected_pattern: VolumePattern):
        """Test that each naming style is read by its own pattern."""
        match = extract_volume_number(name)
        assert match is not None
        assert match.number == expected_number
        assert match.pattern == expected_pattern

    def test_pattern_priority(self):
        """Test that earlier patterns win over later ones."""
        # 第N巻 beats the v-prefix further along the name
        match = extract_volume_number("第2巻 v05")
        assert match is not None
        assert match.number == 2
        assert match.pattern == VolumePattern.KANJI_DAI_KAN

        # Parentheses come before the v-prefix
        match = extract_volume_number("Title v05 (2)")
        assert match is not None
        assert match.number == 2
        assert match.pattern == VolumePattern.PARENS

    def test_v_prefix_needs_word_start(self):
        """Test that a 'v' inside a word is not a volume marker."""
        match = extract_volume_number("Dev12")
        assert match is not None
        assert match.number == 12
        assert match.pattern == VolumePattern.TRAILING_NUMBER

    def test_rejects_zero(self):
        """Test that a captured 0 never counts as a volume number."""
        assert extract_volume_number("Title v00") is None
        assert extract_volume_number("Extras (0)") is None

    def test_zero_falls_through_to_next_pattern(self):
        """Test that a pattern capturing 0 lets later patterns try."""
        match = extract_volume_number("Title v0 [4]")
        assert match is not None
        assert match.number == 4
        assert match.pattern == VolumePattern.BRACKETS

    def test_fullwidth_names(self):
        """Test that fullwidth names are normalized before matching."""
        match = extract_volume_number("３巻")
        assert match is not None
        assert match.number == 3

        match = extract_volume_number("ｖ０３")
        assert match is not None
        assert match.number == 3
        assert match.pattern == VolumePattern.V_PREFIX


class TestExtractVolumeNumberWithAncestors:
    """Test the parent and grandparent fallback."""

    def test_prefers_folder_name(self):
        """Test that the folder's own name is tried first."""
        match = extract_volume_number_with_ancestors("Vol 2", ("Series v01-10",))
        assert match is not None
        assert match.number == 2
        assert match.source_name == "Vol 2"

    def test_falls_back_to_parent(self):
        """Test the parent folder is used when the folder name has no number."""
        match = extract_volume_number_with_ancestors("images", ("Vol 2", "Series"))
        assert match is not None
        assert match.number == 2
        assert match.source_name == "Vol 2"

    def test_falls_back_to_grandparent(self):
        """Test the grandparent folder is used after the parent."""
        match = extract_volume_number_with_ancestors("images", ("scans", "第4巻"))
        assert match is not None
        assert match.number == 4
        assert match.pattern == VolumePattern.KANJI_DAI_KAN

    def test_stops_at_grandparent(self):
        """Test that ancestors beyond the grandparent are never consulted."""
        assert extract_volume_number_with_ancestors("images", ("scans", "raw", "Vol 9")) is None

    def test_no_ancestors(self):
        """Test that a root folder without a number gives None."""
        assert extract_volume_number_with_ancestors("images") is None
