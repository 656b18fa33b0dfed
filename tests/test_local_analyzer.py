"""Tests for the local rule-based analyzer."""

import pytest

from proofmark.core.local_analyzer import LocalAnalyzer, pick_best_candidate, stable_suggestion_id
from proofmark.core.schemas_grammar import CheckOptions

GRAMMAR_ONLY = CheckOptions(include_spelling=False, include_grammar=True, include_style=False)
SPELLING_ONLY = CheckOptions(include_spelling=True, include_grammar=False, include_style=False)
STYLE_ONLY = CheckOptions(include_spelling=False, include_grammar=False, include_style=True)


@pytest.fixture
def analyzer(spell_checker):
    return LocalAnalyzer(spell_checker=spell_checker)


class TestPickBestCandidate:
    def test_prefers_apostrophe_variant(self):
        """'dont' -> "don't" even when another candidate ranks first."""
        assert pick_best_candidate("dont", ["done", "don't"]) == "don't"

    def test_preserves_capitalization(self):
        assert pick_best_candidate("Teh", ["the"]) == "The"

    def test_no_candidates(self):
        assert pick_best_candidate("zyx", []) == ""


@pytest.mark.asyncio
async def test_contraction_agreement_beats_spelling(analyzer):
    """'She dont' is a grammar fix, not a spelling fix."""
    text = "She dont like teh cat."

    suggestions = await analyzer.analyze(text)

    assert [(s.original, s.proposed, s.type) for s in suggestions] == [
        ("dont", "doesn't", "grammar"),
        ("teh", "the", "spelling"),
    ]
    first = suggestions[0]
    assert (first.range.start, first.range.end) == (4, 8)
    assert first.confidence == 0.95
    assert first.severity == "high"


@pytest.mark.asyncio
async def test_plural_subject_with_doesnt(analyzer):
    suggestions = await analyzer.analyze("They doesn't care.", GRAMMAR_ONLY)

    assert [(s.original, s.proposed) for s in suggestions] == [("doesn't", "don't")]


@pytest.mark.asyncio
async def test_correct_contractions_are_clean(analyzer):
    assert await analyzer.analyze("She doesn't care. They don't either.", GRAMMAR_ONLY) == []


@pytest.mark.asyncio
async def test_articles(analyzer):
    """Indefinite articles follow the sound of the next word."""
    text = "I want a apple, an house and an hour."

    suggestions = await analyzer.analyze(text, GRAMMAR_ONLY)

    assert [(s.original, s.proposed) for s in suggestions] == [("a", "an"), ("an", "a")]
    assert all(s.confidence == 0.8 for s in suggestions)


@pytest.mark.asyncio
async def test_article_exceptions(analyzer):
    """'a university' and 'an honest' are correct."""
    assert await analyzer.analyze("It is a university with an honest dean.", GRAMMAR_ONLY) == []


@pytest.mark.asyncio
async def test_repeated_word(analyzer):
    text = "The the cat sat."

    suggestions = await analyzer.analyze(text, GRAMMAR_ONLY)

    assert len(suggestions) == 1
    assert suggestions[0].original == "The the"
    assert suggestions[0].proposed == "The"


@pytest.mark.asyncio
async def test_repeated_word_across_lines_is_ignored(analyzer):
    assert await analyzer.analyze("the\nthe cat", GRAMMAR_ONLY) == []


@pytest.mark.asyncio
async def test_punctuation_spacing(analyzer):
    text = "Hello , world and one,two"

    suggestions = await analyzer.analyze(text, GRAMMAR_ONLY)

    assert [(s.original, s.proposed, s.type) for s in suggestions] == [
        (" ,", ",", "punctuation"),
        (",", ", ", "punctuation"),
    ]


@pytest.mark.asyncio
async def test_spelling_skips_acronyms_and_contractions(analyzer):
    """All-caps words and contractions are never spell-checked."""
    assert await analyzer.analyze("NASA isn't here.", SPELLING_ONLY) == []


@pytest.mark.asyncio
async def test_possessive_checked_on_stem(analyzer):
    """Possessives flag only the stem."""
    text = "The boy's ball and Zyx's cat."

    suggestions = await analyzer.analyze(text, SPELLING_ONLY)

    assert len(suggestions) == 1
    flagged = suggestions[0]
    assert flagged.original == "Zyx"
    assert text[flagged.range.start : flagged.range.end] == "Zyx"


@pytest.mark.asyncio
async def test_spelling_without_candidates(analyzer):
    """Unknown words without candidates get an empty proposal and low confidence."""
    suggestions = await analyzer.analyze("The zyx sat.", SPELLING_ONLY)

    assert len(suggestions) == 1
    assert suggestions[0].proposed == ""
    assert suggestions[0].confidence == 0.5
    assert suggestions[0].can_regenerate is True


@pytest.mark.asyncio
async def test_passive_voice(analyzer):
    text = "The ball was thrown by the boy."

    suggestions = await analyzer.analyze(text, STYLE_ONLY)

    assert len(suggestions) == 1
    passive = suggestions[0]
    assert passive.type == "passive"
    assert passive.original == "was thrown"
    assert passive.proposed == ""
    assert passive.confidence == 0.5
    assert passive.category == "clarity"


@pytest.mark.asyncio
async def test_style_disabled_skips_passive(analyzer):
    assert await analyzer.analyze("The ball was thrown.", GRAMMAR_ONLY) == []


@pytest.mark.asyncio
async def test_ids_are_stable_across_offsets(analyzer):
    """The same finding keeps its id when text before it changes."""
    first = await analyzer.analyze("teh cat", SPELLING_ONLY)
    second = await analyzer.analyze("The teh cat", SPELLING_ONLY)

    assert first[0].id == second[0].id
    assert first[0].id == stable_suggestion_id("spelling", "teh", "the", 0)
    assert first[0].id.startswith("local-")


@pytest.mark.asyncio
async def test_repeated_findings_get_distinct_ids(analyzer):
    suggestions = await analyzer.analyze("teh cat and teh dog", SPELLING_ONLY)

    assert len({s.id for s in suggestions}) == 2


@pytest.mark.asyncio
async def test_whitespace_only(analyzer):
    assert await analyzer.analyze("   \n\t ") == []


@pytest.mark.asyncio
async def test_text_is_nfc_normalized(analyzer):
    """Ranges refer to the composed form of the text."""
    text = "cafe\u0301 teh"

    suggestions = await analyzer.analyze(text, SPELLING_ONLY)

    teh = [s for s in suggestions if s.original == "teh"]
    assert len(teh) == 1
    assert (teh[0].range.start, teh[0].range.end) == (5, 8)


@pytest.mark.asyncio
async def test_internal_failure_yields_empty_list():
    """A broken spell checker is logged and produces no suggestions."""

    class BrokenChecker:
        def unknown(self, words):
            raise RuntimeError("dictionary corrupted")

    analyzer = LocalAnalyzer(spell_checker=BrokenChecker())

    assert await analyzer.analyze("She dont care.") == []


@pytest.mark.asyncio
async def test_dictionary_loads_lazily_once(spell_checker):
    """The spelling dictionary is built on first use, once."""
    calls = []

    def factory(language):
        calls.append(language)
        return spell_checker

    analyzer = LocalAnalyzer(language="en", spell_checker_factory=factory)
    assert analyzer.is_loaded is False

    await analyzer.analyze("teh cat", SPELLING_ONLY)
    await analyzer.analyze("teh dog", SPELLING_ONLY)

    assert calls == ["en"]
    assert analyzer.is_loaded is True
