"""Text statistics and sentence-boundary helpers."""

import re
from dataclasses import dataclass

SENTENCE_TERMINATORS = ".!?"
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")

READING_WPM = 275
SPEAKING_WPM = 180


@dataclass(frozen=True)
class TextMetrics:
    word_count: int
    character_count: int
    sentence_count: int
    average_words_per_sentence: float
    reading_time_seconds: int
    speaking_time_seconds: int


def sentence_bounds(text: str, start: int, end: int) -> tuple[int, int]:
    """
    Widen [start, end) to the sentence that contains it.

    The sentence begins after the nearest terminator (``.``, ``!``, ``?``)
    before ``start`` with leading whitespace trimmed, and ends just after the
    nearest terminator at or after ``end`` (or at end of text). Line breaks
    are hard boundaries, so a sentence never spans paragraphs.
    """
    sentence_start = 0
    for index in range(min(start, len(text)) - 1, -1, -1):
        if text[index] in SENTENCE_TERMINATORS or text[index] == "\n":
            sentence_start = index + 1
            break
    while sentence_start < start and text[sentence_start].isspace():
        sentence_start += 1

    sentence_end = len(text)
    for index in range(max(end, sentence_start), len(text)):
        if text[index] == "\n":
            sentence_end = index
            break
        if text[index] in SENTENCE_TERMINATORS:
            sentence_end = index + 1
            break

    return sentence_start, max(sentence_end, end)


def count_sentences(text: str) -> int:
    return len([s for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()])


def calculate_text_metrics(text: str) -> TextMetrics:
    """Counts plus reading (275 wpm) and speaking (180 wpm) time."""
    words = text.split()
    word_count = len(words)
    sentence_count = max(count_sentences(text), 1)

    return TextMetrics(
        word_count=word_count,
        character_count=len(text),
        sentence_count=sentence_count,
        average_words_per_sentence=word_count / sentence_count,
        reading_time_seconds=round(word_count / READING_WPM * 60),
        speaking_time_seconds=round(word_count / SPEAKING_WPM * 60),
    )


def format_duration(total_seconds: int) -> str:
    """Human-readable duration: ``45s``, ``3m 20s``, ``1h 5m``."""
    if total_seconds < 60:
        return f"{total_seconds}s"
    if total_seconds < 3600:
        minutes, seconds = divmod(total_seconds, 60)
        return f"{minutes}m {seconds}s" if seconds else f"{minutes}m"
    hours, remainder = divmod(total_seconds, 3600)
    return f"{hours}h {remainder // 60}m"
