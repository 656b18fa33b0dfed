"""Unicode position mapping between grapheme clusters, code units and bytes.

Analyzers report ranges as ``str`` indices (code units here). Cursor and
selection APIs think in user-perceived characters (grapheme clusters), and
token accounting works in UTF-8 bytes. A ``PositionMap`` is built once per
text snapshot and translates between the three; UTF-16 offsets are also
exposed for clients that address text the way browsers do.
"""

import bisect
from dataclasses import dataclass

import regex

# Extended grapheme cluster (combining marks, emoji modifiers, ZWJ sequences)
_GRAPHEME_RE = regex.compile(r"\X")


@dataclass(frozen=True)
class PositionEntry:
    """Coordinates of the first code unit of one grapheme cluster."""

    grapheme_index: int
    code_unit_offset: int
    utf16_offset: int
    byte_offset: int


def _utf16_length(text: str) -> int:
    return sum(2 if ord(ch) > 0xFFFF else 1 for ch in text)


class PositionMap:
    """Read-only coordinate index for one text snapshot."""

    def __init__(self, text: str, entries: tuple[PositionEntry, ...]):
        self._text = text
        self._entries = entries
        self._code_units = [e.code_unit_offset for e in entries]
        self._utf16 = [e.utf16_offset for e in entries]
        self._total_utf16 = _utf16_length(text)
        self._total_bytes = len(text.encode("utf-8"))

    @classmethod
    def build(cls, text: str) -> "PositionMap":
        """Segment ``text`` into grapheme clusters and index every boundary."""
        entries: list[PositionEntry] = []
        utf16_offset = 0
        byte_offset = 0
        for index, match in enumerate(_GRAPHEME_RE.finditer(text)):
            cluster = match.group()
            entries.append(
                PositionEntry(
                    grapheme_index=index,
                    code_unit_offset=match.start(),
                    utf16_offset=utf16_offset,
                    byte_offset=byte_offset,
                )
            )
            utf16_offset += _utf16_length(cluster)
            byte_offset += len(cluster.encode("utf-8"))
        return cls(text, tuple(entries))

    @property
    def text(self) -> str:
        return self._text

    @property
    def entries(self) -> tuple[PositionEntry, ...]:
        return self._entries

    @property
    def grapheme_count(self) -> int:
        return len(self._entries)

    @property
    def code_unit_count(self) -> int:
        return len(self._text)

    @property
    def utf16_count(self) -> int:
        return self._total_utf16

    @property
    def byte_count(self) -> int:
        return self._total_bytes

    def __len__(self) -> int:
        return len(self._entries)

    def _check_code_unit(self, offset: int) -> None:
        if offset < 0 or offset > len(self._text):
            raise ValueError(f"code unit offset {offset} outside 0..{len(self._text)}")

    def code_unit_to_grapheme(self, offset: int) -> int:
        """
        Map a code-unit offset to the index of the grapheme containing it.

        An offset equal to the text length is the end-of-text position and
        maps to the grapheme count. Offsets in the middle of a cluster map to
        that cluster.
        """
        self._check_code_unit(offset)
        if offset == len(self._text):
            return len(self._entries)
        return bisect.bisect_right(self._code_units, offset) - 1

    def grapheme_to_code_unit(self, index: int) -> int:
        """Map a grapheme index (0..grapheme_count) to its starting code unit."""
        if index < 0 or index > len(self._entries):
            raise ValueError(f"grapheme index {index} outside 0..{len(self._entries)}")
        if index == len(self._entries):
            return len(self._text)
        return self._code_units[index]

    def code_unit_to_byte(self, offset: int) -> int:
        """UTF-8 byte offset of a code-unit offset."""
        self._check_code_unit(offset)
        return len(self._text[:offset].encode("utf-8"))

    def code_unit_to_utf16(self, offset: int) -> int:
        """UTF-16 offset of a code-unit offset."""
        self._check_code_unit(offset)
        return _utf16_length(self._text[:offset])

    def utf16_to_code_unit(self, offset: int) -> int:
        """
        Map a UTF-16 offset back to a code-unit offset.

        Offsets landing inside a grapheme snap to the start of that grapheme.
        """
        if offset < 0 or offset > self._total_utf16:
            raise ValueError(f"utf-16 offset {offset} outside 0..{self._total_utf16}")
        if offset == self._total_utf16:
            return len(self._text)
        index = bisect.bisect_right(self._utf16, offset) - 1
        entry = self._entries[index]
        if entry.utf16_offset == offset:
            return entry.code_unit_offset
        # Walk inside the cluster for offsets that split it
        units = entry.utf16_offset
        position = entry.code_unit_offset
        while units < offset:
            units += 2 if ord(self._text[position]) > 0xFFFF else 1
            position += 1
        return position if units == offset else entry.code_unit_offset

    def entry(self, index: int) -> PositionEntry | None:
        """Coordinates of one grapheme, or None when out of range."""
        if 0 <= index < len(self._entries):
            return self._entries[index]
        return None

    def clamp_range(self, start: int, end: int) -> tuple[int, int]:
        """Clamp a code-unit range into the text bounds."""
        safe_start = max(0, min(start, len(self._text)))
        safe_end = max(safe_start, min(end, len(self._text)))
        return safe_start, safe_end

    def snap_to_graphemes(self, start: int, end: int) -> tuple[int, int]:
        """Widen a code-unit range so it never splits a grapheme cluster."""
        start, end = self.clamp_range(start, end)
        first = self.code_unit_to_grapheme(start)
        snapped_start = self.grapheme_to_code_unit(first)
        if end == len(self._text):
            return snapped_start, end
        last = self.code_unit_to_grapheme(end)
        snapped_end = self.grapheme_to_code_unit(last)
        if snapped_end < end:
            snapped_end = self.grapheme_to_code_unit(last + 1)
        return snapped_start, snapped_end

    def debug_info(self, sample: int = 10) -> dict:
        return {
            "total_graphemes": len(self._entries),
            "total_code_units": len(self._text),
            "total_utf16_units": self._total_utf16,
            "total_bytes": self._total_bytes,
            "sample_entries": [e.__dict__ for e in self._entries[:sample]],
        }
