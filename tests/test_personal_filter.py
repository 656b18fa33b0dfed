"""Tests for the personal dictionary filter."""

import json

import pytest

from proofmark.core.errors import ValidationError
from proofmark.core.personal_filter import PersonalDictionary, filter_suggestions, normalize_word
from tests.fakes.fake_analyzers import make_suggestion


class TestNormalizeWord:
    def test_case_folded(self):
        assert normalize_word("Kubernetes") == "kubernetes"

    def test_curly_apostrophe_possessive(self):
        """Curly and straight possessives normalize to the stem."""
        assert normalize_word("Zyx’s") == "zyx"
        assert normalize_word("Zyx's") == "zyx"

    def test_plural_possessive(self):
        """Plural possessives share a stem with the singular possessive."""
        assert normalize_word("dogs'") == "dog"
        assert normalize_word("dog's") == normalize_word("dogs'")
        assert normalize_word("Zyxs'.") == "zyx"

    def test_quote_after_punctuation(self):
        assert normalize_word("Zyx,'") == "zyx"

    def test_surrounding_punctuation(self):
        assert normalize_word('"Zyx,"') == "zyx"
        assert normalize_word("(proofmark)") == "proofmark"


class TestFilterSuggestions:
    def test_filters_allow_listed_words(self):
        """Allow-listed words are removed whatever their case."""
        text = "Kubectl and teh cluster"
        suggestions = [
            make_suggestion(text, "Kubectl", "Kubect", "spelling"),
            make_suggestion(text, "teh", "the", "spelling"),
        ]

        kept = filter_suggestions(suggestions, ["kubectl"])

        assert [s.original for s in kept] == ["teh"]

    def test_applies_to_every_type(self):
        """Grammar suggestions on allow-listed words are filtered too."""
        text = "Zyx zyx"
        suggestions = [make_suggestion(text, "Zyx zyx", "Zyx", "grammar")]

        assert filter_suggestions(suggestions, ["zyx zyx"]) == []

    def test_plural_possessive_of_allowed_word(self):
        text = "The Zyxs' manual"
        suggestions = [make_suggestion(text, "Zyxs'", "Zyx's", "spelling")]

        assert filter_suggestions(suggestions, ["Zyx"]) == []

    def test_empty_allow_list_keeps_everything(self):
        text = "teh cat"
        suggestions = [make_suggestion(text, "teh", "the", "spelling")]

        assert filter_suggestions(suggestions, []) == suggestions


class TestPersonalDictionary:
    def test_add_and_filter(self):
        """Adding a word filters it from later results."""
        dictionary = PersonalDictionary()
        text = "Proofmark’s engine"

        assert dictionary.add_word("Proofmark") == "proofmark"
        kept = dictionary.filter([make_suggestion(text, "Proofmark’s", "Proofmarks", "spelling")])

        assert kept == []
        assert dictionary.has_word("PROOFMARK")

    def test_add_empty_word(self):
        with pytest.raises(ValidationError, match="Word cannot be empty"):
            PersonalDictionary().add_word("  ")

    def test_add_duplicate_word(self):
        """Duplicates are rejected after normalization."""
        dictionary = PersonalDictionary(["Zyx"])

        with pytest.raises(ValidationError, match="already exists"):
            dictionary.add_word("zyx")

    def test_remove_word(self):
        dictionary = PersonalDictionary(["Zyx"])

        assert dictionary.remove_word("ZYX") is True
        assert dictionary.remove_word("ZYX") is False
        assert len(dictionary) == 0

    def test_persistence_round_trip(self, tmp_path):
        """Words survive a save/load cycle through the JSON file."""
        path = tmp_path / "dictionary.json"
        dictionary = PersonalDictionary.load(path)
        assert len(dictionary) == 0

        dictionary.add_word("Zyx")
        dictionary.add_word("Kubectl")

        assert json.loads(path.read_text()) == ["Kubectl", "Zyx"]
        assert PersonalDictionary.load(path).words() == ["Kubectl", "Zyx"]

    def test_load_rejects_non_list(self, tmp_path):
        path = tmp_path / "dictionary.json"
        path.write_text('{"words": []}')

        with pytest.raises(ValidationError):
            PersonalDictionary.load(path)
