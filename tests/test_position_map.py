"""Tests for grapheme / code-unit / byte position mapping."""

import pytest

from proofmark.core.position_map import PositionMap


def test_ascii_offsets_are_identical():
    """Plain ASCII maps every coordinate system one to one."""
    pm = PositionMap.build("hello")

    assert pm.grapheme_count == 5
    assert pm.code_unit_count == 5
    assert pm.byte_count == 5
    for offset in range(6):
        assert pm.code_unit_to_grapheme(offset) == offset
        assert pm.grapheme_to_code_unit(offset) == offset
        assert pm.code_unit_to_byte(offset) == offset


def test_combining_mark_is_one_grapheme():
    """A base letter plus combining accent counts as one character."""
    text = "cafe\u0301!"
    pm = PositionMap.build(text)

    assert pm.grapheme_count == 5
    assert pm.code_unit_count == 6
    # Offset inside the cluster maps to that cluster
    assert pm.code_unit_to_grapheme(4) == 3
    assert pm.code_unit_to_grapheme(5) == 4
    assert pm.grapheme_to_code_unit(4) == 5


def test_emoji_sequences():
    """ZWJ family emoji is one grapheme spanning several code points."""
    family = "\U0001F468\u200d\U0001F469\u200d\U0001F467"
    text = f"a{family}b"
    pm = PositionMap.build(text)

    assert pm.grapheme_count == 3
    assert pm.grapheme_to_code_unit(2) == 1 + len(family)
    assert pm.code_unit_to_grapheme(len(text)) == 3
    assert pm.byte_count == len(text.encode("utf-8"))


def test_utf16_offsets_for_astral_characters():
    """Characters outside the BMP take two UTF-16 units."""
    text = "x\U0001F600y"
    pm = PositionMap.build(text)

    assert pm.utf16_count == 4
    assert pm.code_unit_to_utf16(2) == 3
    assert pm.utf16_to_code_unit(3) == 2
    # Landing inside the surrogate pair snaps back to the emoji start
    assert pm.utf16_to_code_unit(2) == 1


def test_byte_offsets_multibyte():
    """UTF-8 byte offsets account for multi-byte characters."""
    pm = PositionMap.build("a\u00f1b")

    assert pm.code_unit_to_byte(1) == 1
    assert pm.code_unit_to_byte(2) == 3
    assert pm.code_unit_to_byte(3) == 4


def test_empty_text():
    """Empty text has only the end-of-text position."""
    pm = PositionMap.build("")

    assert len(pm) == 0
    assert pm.code_unit_to_grapheme(0) == 0
    assert pm.grapheme_to_code_unit(0) == 0
    assert pm.entry(0) is None


def test_out_of_range_offsets_raise():
    """Offsets outside the text are rejected."""
    pm = PositionMap.build("abc")

    with pytest.raises(ValueError):
        pm.code_unit_to_grapheme(4)
    with pytest.raises(ValueError):
        pm.grapheme_to_code_unit(-1)
    with pytest.raises(ValueError):
        pm.utf16_to_code_unit(10)


def test_snap_to_graphemes_widens_split_cluster():
    """A range ending inside a cluster is widened to the cluster end."""
    text = "cafe\u0301 au lait"
    pm = PositionMap.build(text)

    assert pm.snap_to_graphemes(2, 4) == (2, 5)
    assert pm.snap_to_graphemes(0, 100) == (0, len(text))


def test_clamp_range():
    """Ranges are clamped into the text bounds."""
    pm = PositionMap.build("abcdef")

    assert pm.clamp_range(-3, 4) == (0, 4)
    assert pm.clamp_range(5, 2) == (5, 5)
    assert pm.clamp_range(2, 99) == (2, 6)
