"""Per-user allow-list filtering of suggestions."""

import json
import re
from pathlib import Path
from typing import Iterable

from proofmark.core.errors import ValidationError
from proofmark.core.logging import get_logger
from proofmark.core.schemas_grammar import Suggestion

logger = get_logger(__name__)

_QUOTE_MAP = str.maketrans(
    {
        "‘": "'",
        "’": "'",
        "‚": "'",
        "‛": "'",
        "′": "'",
        "`": "'",
        "´": "'",
        "“": '"',
        "”": '"',
        "„": '"',
    }
)
_EDGE_PUNCT_RE = re.compile(r"^[\W_]+|[\W_]+$")
_LEADING_PUNCT_RE = re.compile(r"^[\W_]+")
# Trailing punctuation other than the apostrophe of a plural possessive
_TRAILING_PUNCT_RE = re.compile(r"(?:[^\w']|_)+$")


def normalize_word(word: str) -> str:
    """
    Normalize a flagged word for allow-list comparison.

    Curly quotes become ASCII, surrounding punctuation and possessive
    endings (``'s`` / ``s'``) are stripped, and case is folded.
    """
    normalized = word.translate(_QUOTE_MAP).strip().casefold()
    normalized = _LEADING_PUNCT_RE.sub("", normalized)
    normalized = _TRAILING_PUNCT_RE.sub("", normalized)
    if normalized.endswith(("'s", "s'")):
        normalized = normalized[:-2]
    return _EDGE_PUNCT_RE.sub("", normalized)


def filter_suggestions(suggestions: list[Suggestion], allow_list: Iterable[str]) -> list[Suggestion]:
    """Drop suggestions whose normalized flagged word is in ``allow_list``."""
    allowed = {normalize_word(w) for w in allow_list}
    allowed.discard("")
    if not allowed:
        return list(suggestions)

    kept: list[Suggestion] = []
    for suggestion in suggestions:
        if normalize_word(suggestion.original) in allowed:
            logger.debug(f"Filtered personal dictionary word: '{suggestion.original}'")
            continue
        kept.append(suggestion)
    return kept


class PersonalDictionary:
    """In-memory allow-list with optional JSON file persistence."""

    def __init__(self, words: Iterable[str] = (), path: Path | None = None):
        self.path = path
        self._words: dict[str, str] = {}
        for word in words:
            self._words.setdefault(normalize_word(word), word)
        self._words.pop("", None)

    @classmethod
    def load(cls, path: Path) -> "PersonalDictionary":
        """Load a dictionary from a JSON array file (missing file = empty)."""
        if not path.exists():
            return cls(path=path)
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, list):
            raise ValidationError(f"Personal dictionary file {path} must hold a JSON array")
        return cls(words=[str(w) for w in data], path=path)

    def save(self) -> None:
        if self.path is None:
            return
        self.path.write_text(json.dumps(sorted(self._words.values()), indent=2), encoding="utf-8")

    def has_word(self, word: str) -> bool:
        return normalize_word(word) in self._words

    def add_word(self, word: str) -> str:
        """Add a word; returns its normalized form."""
        normalized = normalize_word(word)
        if not normalized:
            raise ValidationError("Word cannot be empty")
        if normalized in self._words:
            raise ValidationError(f"'{word}' already exists in dictionary")
        self._words[normalized] = word.strip()
        logger.info(f"Added '{word.strip()}' to personal dictionary")
        self.save()
        return normalized

    def remove_word(self, word: str) -> bool:
        removed = self._words.pop(normalize_word(word), None) is not None
        if removed:
            self.save()
        return removed

    def words(self) -> list[str]:
        return sorted(self._words.values())

    def __len__(self) -> int:
        return len(self._words)

    def filter(self, suggestions: list[Suggestion]) -> list[Suggestion]:
        return filter_suggestions(suggestions, self._words.keys())
