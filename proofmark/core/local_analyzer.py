"""
Fast local rule checks.

Runs a fixed set of cheap rules over the text: spelling against a
pyspellchecker dictionary, subject/contraction agreement, indefinite
articles, repeated words, punctuation spacing and passive voice. Every rule
has a deterministic confidence/severity profile so downstream consumers can
rely on stable values.
"""

import asyncio
import hashlib
import unicodedata
from dataclasses import dataclass
from typing import Any, Callable

import regex
from spellchecker import SpellChecker

from proofmark.core.logging import get_logger
from proofmark.core.schemas_grammar import CheckOptions, Suggestion, TextRange

logger = get_logger(__name__)


@dataclass(frozen=True)
class RuleProfile:
    type: str
    confidence: float
    severity: str
    priority: int  # lower wins when two rules flag the same range


CONTRACTION_PROFILE = RuleProfile("grammar", 0.95, "high", 0)
SPELLING_PROFILE = RuleProfile("spelling", 0.9, "high", 1)
ARTICLE_PROFILE = RuleProfile("grammar", 0.8, "medium", 2)
REPEATED_PROFILE = RuleProfile("grammar", 0.85, "medium", 3)
PUNCTUATION_PROFILE = RuleProfile("punctuation", 0.85, "medium", 4)
PASSIVE_PROFILE = RuleProfile("passive", 0.5, "low", 5)

SPELLING_NO_CANDIDATE_CONFIDENCE = 0.5

_WORD_RE = regex.compile(r"\p{L}+(?:['’]\p{L}+)*")

_SINGULAR_SUBJECTS = {
    "he", "she", "it", "this", "that", "everyone", "everybody", "someone",
    "somebody", "nobody", "anyone", "anybody", "one",
}
_PLURAL_SUBJECTS = {"i", "you", "we", "they", "these", "those"}
_CONTRACTION_RE = regex.compile(
    r"\b(?P<subject>\p{L}+)\s+(?P<verb>don['’]?t|doesn['’]?t)\b", regex.IGNORECASE
)

_ARTICLE_RE = regex.compile(r"\b(?P<article>an?)\s+(?P<word>\p{L}+)", regex.IGNORECASE)
# Vowel-letter words pronounced with a consonant sound, and vice versa
_CONSONANT_SOUND_PREFIXES = ("uni", "use", "usu", "uti", "eu", "ewe", "one", "once", "ubi", "ura")
_VOWEL_SOUND_PREFIXES = ("hour", "honest", "honor", "honour", "heir")

_REPEATED_RE = regex.compile(r"\b(?P<word>\p{L}+)(?P<gap>[ \t]+)(?P=word)\b", regex.IGNORECASE)

_SPACE_BEFORE_PUNCT_RE = regex.compile(r"(?<=\p{L})(?P<space>[ \t]+)(?P<punct>[,.;:!?])")
_MISSING_SPACE_AFTER_COMMA_RE = regex.compile(r"(?<=\p{L}),(?=\p{L})")

_BE_VERBS = "am|is|are|was|were|be|been|being"
_IRREGULAR_PARTICIPLES = (
    "done|made|given|taken|seen|written|known|shown|found|built|sent|held|told|"
    "paid|kept|left|brought|bought|caught|taught|thought|chosen|driven|eaten|"
    "forgotten|hidden|spoken|stolen|broken|frozen|worn|torn|born|drawn|grown|thrown|"
    "begun|sung|run|won|hung|struck|put|set|cut|read|led|fed|met|lost|meant|sold"
)
_PASSIVE_RE = regex.compile(
    rf"\b(?P<aux>{_BE_VERBS})\s+(?:\p{{L}}+ly\s+)?(?P<participle>\p{{L}}+ed|{_IRREGULAR_PARTICIPLES})\b",
    regex.IGNORECASE,
)


def pick_best_candidate(original: str, candidates: list[str]) -> str:
    """
    Choose a replacement for a misspelled word.

    Prefers a candidate that differs from the original only by apostrophes
    (``dont`` -> ``don't``); otherwise takes the first (highest-ranked) one.
    Empty string when there are no candidates.
    """
    if not candidates:
        return ""

    bare = original.replace("'", "").lower()
    best = next((c for c in candidates if c.replace("'", "").lower() == bare), candidates[0])

    if original[:1].isupper():
        best = best[:1].upper() + best[1:]
    return best


def stable_suggestion_id(type_: str, original: str, proposed: str, ordinal: int) -> str:
    digest = hashlib.sha1(f"{type_}\x00{original}\x00{proposed}\x00{ordinal}".encode("utf-8"))
    return f"local-{digest.hexdigest()[:12]}"


def _match_case(template: str, word: str) -> str:
    return word[:1].upper() + word[1:] if template[:1].isupper() else word


def _needs_an(word: str) -> bool:
    lowered = word.lower()
    if lowered.startswith(_VOWEL_SOUND_PREFIXES):
        return True
    if lowered.startswith(_CONSONANT_SOUND_PREFIXES):
        return False
    if len(word) > 1 and word.isupper():
        # Acronyms are read letter by letter
        return lowered[0] in "aefhilmnorsx"
    return lowered[0] in "aeiou"


class LocalAnalyzer:
    """
    Pipeline of local rule checks over one text snapshot.

    The spelling dictionary loads once on first use. Pass ``spell_checker``
    to inject a preloaded (or fake) checker.
    """

    def __init__(
        self,
        language: str = "en",
        spell_checker: Any | None = None,
        spell_checker_factory: Callable[[str], Any] | None = None,
    ):
        self.language = language
        self._spell = spell_checker
        self._factory = spell_checker_factory or (lambda lang: SpellChecker(language=lang))
        self._load_lock = asyncio.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._spell is not None

    async def _get_spell_checker(self) -> Any:
        if self._spell is not None:
            return self._spell
        async with self._load_lock:
            if self._spell is None:
                logger.info(f"Loading spelling dictionary for '{self.language}'")
                self._spell = await asyncio.to_thread(self._factory, self.language)
        return self._spell

    async def analyze(self, text: str, options: CheckOptions | None = None) -> list[Suggestion]:
        """
        Analyze text with the local rules.

        Ranges refer to the NFC-normalized text. Any internal failure is
        logged and yields an empty list.

        Args:
            text: Text to analyze
            options: Enabled rule groups (spelling, grammar, style)

        Returns:
            Suggestions sorted by range start
        """
        options = options or CheckOptions()
        normalized = unicodedata.normalize("NFC", text)
        if not normalized.strip():
            return []

        try:
            findings: list[tuple[RuleProfile, Suggestion]] = []

            if options.include_grammar:
                findings.extend(self._check_contractions(normalized))
                findings.extend(self._check_articles(normalized))
                findings.extend(self._check_repeated_words(normalized))
                findings.extend(self._check_punctuation_spacing(normalized))

            if options.include_spelling:
                spell = await self._get_spell_checker()
                findings.extend(self._check_spelling(normalized, spell))

            if options.include_style:
                findings.extend(self._check_passive(normalized))

            suggestions = self._deduplicate(findings)

        except Exception as e:
            logger.exception(f"Local analysis failed: {e}")
            return []

        logger.debug(f"Local analysis produced {len(suggestions)} suggestions for {len(normalized)} chars")
        return suggestions

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    @staticmethod
    def _make(
        profile: RuleProfile,
        text: str,
        start: int,
        end: int,
        proposed: str,
        explanation: str,
        confidence: float | None = None,
    ) -> tuple[RuleProfile, Suggestion]:
        suggestion = Suggestion(
            range=TextRange(start=start, end=end),
            type=profile.type,
            original=text[start:end],
            proposed=proposed,
            explanation=explanation,
            confidence=profile.confidence if confidence is None else confidence,
            severity=profile.severity,
            can_regenerate=profile.type in ("spelling", "passive", "style"),
        )
        return profile, suggestion

    def _check_spelling(self, text: str, spell: Any) -> list[tuple[RuleProfile, Suggestion]]:
        tokens = []
        for match in _WORD_RE.finditer(text):
            word = match.group().replace("’", "'").lower()
            if len(word) < 2 or match.group().isupper():
                continue
            if "'" in word:
                # Possessives are checked on their stem; contractions are skipped
                if not word.endswith("'s"):
                    continue
                tokens.append((match.start(), match.start() + len(word) - 2, word[:-2]))
            else:
                tokens.append((match.start(), match.end(), word))

        if not tokens:
            return []

        unknown = set(spell.unknown([word for _, _, word in tokens]))

        results = []
        for start, end, word in tokens:
            if word not in unknown:
                continue
            flagged = text[start:end]

            ranked: list[str] = []
            top = spell.correction(word)
            if top and top != word:
                ranked.append(top)
            for candidate in sorted(spell.candidates(word) or ()):
                if candidate != word and candidate not in ranked:
                    ranked.append(candidate)

            proposed = pick_best_candidate(flagged, ranked)
            if proposed:
                explanation = f"'{flagged}' may be misspelled. Did you mean '{proposed}'?"
                confidence = None
            else:
                explanation = f"'{flagged}' is not in the dictionary."
                confidence = SPELLING_NO_CANDIDATE_CONFIDENCE

            results.append(
                self._make(
                    SPELLING_PROFILE, text, start, end,
                    proposed, explanation, confidence=confidence,
                )
            )
        return results

    def _check_contractions(self, text: str) -> list[tuple[RuleProfile, Suggestion]]:
        results = []
        for match in _CONTRACTION_RE.finditer(text):
            subject = match.group("subject").lower()
            verb = match.group("verb")
            is_does = verb.lower().startswith("doesn")

            if subject in _SINGULAR_SUBJECTS and not is_does:
                proposed = _match_case(verb, "doesn't")
                explanation = f"Use \"doesn't\" with the singular subject '{match.group('subject')}'."
            elif subject in _PLURAL_SUBJECTS and is_does:
                proposed = _match_case(verb, "don't")
                explanation = f"Use \"don't\" with the subject '{match.group('subject')}'."
            else:
                continue

            results.append(
                self._make(CONTRACTION_PROFILE, text, match.start("verb"), match.end("verb"), proposed, explanation)
            )
        return results

    def _check_articles(self, text: str) -> list[tuple[RuleProfile, Suggestion]]:
        results = []
        for match in _ARTICLE_RE.finditer(text):
            article = match.group("article")
            word = match.group("word")
            wants_an = _needs_an(word)

            if wants_an and article.lower() == "a":
                proposed = _match_case(article, "an")
            elif not wants_an and article.lower() == "an":
                proposed = _match_case(article, "a")
            else:
                continue

            results.append(
                self._make(
                    ARTICLE_PROFILE, text, match.start("article"), match.end("article"),
                    proposed, f"Use '{proposed.lower()}' before '{word}'.",
                )
            )
        return results

    def _check_repeated_words(self, text: str) -> list[tuple[RuleProfile, Suggestion]]:
        results = []
        for match in _REPEATED_RE.finditer(text):
            word = match.group("word")
            results.append(
                self._make(
                    REPEATED_PROFILE, text, match.start(), match.end(),
                    word, f"'{word}' is repeated.",
                )
            )
        return results

    def _check_punctuation_spacing(self, text: str) -> list[tuple[RuleProfile, Suggestion]]:
        results = []
        for match in _SPACE_BEFORE_PUNCT_RE.finditer(text):
            punct = match.group("punct")
            results.append(
                self._make(
                    PUNCTUATION_PROFILE, text, match.start(), match.end(),
                    punct, f"Remove the space before '{punct}'.",
                )
            )
        for match in _MISSING_SPACE_AFTER_COMMA_RE.finditer(text):
            results.append(
                self._make(
                    PUNCTUATION_PROFILE, text, match.start(), match.end(),
                    ", ", "Add a space after the comma.",
                )
            )
        return results

    def _check_passive(self, text: str) -> list[tuple[RuleProfile, Suggestion]]:
        results = []
        for match in _PASSIVE_RE.finditer(text):
            results.append(
                self._make(
                    PASSIVE_PROFILE, text, match.start(), match.end(),
                    "", "Passive voice can make the sentence less direct. Consider an active construction.",
                )
            )
        return results

    @staticmethod
    def _deduplicate(findings: list[tuple[RuleProfile, Suggestion]]) -> list[Suggestion]:
        """Keep one finding per range, preferring the higher-priority rule."""
        best: dict[tuple[int, int], tuple[RuleProfile, Suggestion]] = {}
        for profile, suggestion in findings:
            key = (suggestion.range.start, suggestion.range.end)
            current = best.get(key)
            if current is None or profile.priority < current[0].priority:
                best[key] = (profile, suggestion)

        ordered = sorted(
            (s for _, s in best.values()),
            key=lambda s: (s.range.start, s.range.end),
        )

        # Ids depend on content and ordinal, not offsets, so an edit elsewhere
        # in the text does not change the ids of unaffected findings.
        seen: dict[tuple[str, str, str], int] = {}
        for suggestion in ordered:
            signature = (suggestion.type, suggestion.original, suggestion.proposed)
            ordinal = seen.get(signature, 0)
            seen[signature] = ordinal + 1
            suggestion.id = stable_suggestion_id(*signature, ordinal)
        return ordered
