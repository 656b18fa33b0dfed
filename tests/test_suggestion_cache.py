"""Tests for the suggestion cache."""

from proofmark.core.schemas_grammar import CheckOptions
from proofmark.core.suggestion_cache import SuggestionCache, make_cache_key
from tests.fakes.fake_analyzers import make_suggestion


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _suggestions(text="Teh cat"):
    return [make_suggestion(text, "Teh", "The", "spelling")]


class TestCacheKey:
    def test_surrounding_whitespace_ignored(self):
        """Leading and trailing whitespace do not change the key."""
        assert make_cache_key("  hello  ") == make_cache_key("hello")

    def test_case_sensitive(self):
        """Case changes produce different keys."""
        assert make_cache_key("Hello") != make_cache_key("hello")

    def test_option_flags_change_key(self):
        """Different feature flags never share an entry."""
        assert make_cache_key("hello", CheckOptions(include_style=True)) != make_cache_key(
            "hello", CheckOptions(include_style=False)
        )

    def test_priority_does_not_change_key(self):
        """Routing hints do not affect analysis output."""
        assert make_cache_key("hello", CheckOptions(priority="fast")) == make_cache_key(
            "hello", CheckOptions(priority="quality")
        )

    def test_explicit_flags_override_options(self):
        """Callers that route on priority can key on it."""
        fast = CheckOptions(priority="fast")
        quality = CheckOptions(priority="quality")

        assert make_cache_key("hello", fast, fast.hybrid_cache_flags()) != make_cache_key(
            "hello", quality, quality.hybrid_cache_flags()
        )

    def test_fixed_length(self):
        """Keys are fixed-length digests regardless of text size."""
        assert len(make_cache_key("a")) == len(make_cache_key("a" * 10_000)) == 64


class TestSuggestionCache:
    def test_miss_then_hit(self):
        """Stored suggestions are returned on the next lookup."""
        cache = SuggestionCache()
        assert cache.get("Teh cat") is None

        cache.set("Teh cat", None, _suggestions())
        hit = cache.get("Teh cat")

        assert hit is not None
        assert [s.proposed for s in hit] == ["The"]
        assert cache.stats()["hits"] == 1
        assert cache.stats()["misses"] == 1

    def test_empty_result_is_cached(self):
        """An empty list is a hit, not a miss."""
        cache = SuggestionCache()
        cache.set("Clean text", None, [])

        assert cache.get("Clean text") == []

    def test_entries_expire(self):
        """Entries expire after the TTL and are evicted on read."""
        clock = FakeClock()
        cache = SuggestionCache(ttl_seconds=10, clock=clock)
        cache.set("Teh cat", None, _suggestions())

        clock.now += 9
        assert cache.get("Teh cat") is not None

        clock.now += 1
        assert cache.get("Teh cat") is None
        assert len(cache) == 0

    def test_sweep_removes_expired(self):
        """sweep() drops all expired entries at once."""
        clock = FakeClock()
        cache = SuggestionCache(ttl_seconds=5, clock=clock)
        cache.set("one", None, [])
        cache.set("two", None, [], ttl_seconds=60)

        clock.now += 10
        assert cache.sweep() == 1
        assert len(cache) == 1

    def test_max_entries_evicts_oldest(self):
        """Bounded caches evict the oldest entry first."""
        cache = SuggestionCache(max_entries=2)
        cache.set("one", None, [])
        cache.set("two", None, [])
        cache.set("three", None, [])

        assert cache.get("one") is None
        assert cache.get("three") == []

    def test_returns_copies(self):
        """Mutating a returned suggestion does not corrupt the cache."""
        cache = SuggestionCache()
        cache.set("Teh cat", None, _suggestions())

        first = cache.get("Teh cat")
        first[0].proposed = "changed"

        assert cache.get("Teh cat")[0].proposed == "The"

    def test_metadata_is_stored_with_entry(self):
        cache = SuggestionCache()
        flags = {"route": "hybrid"}
        cache.set("Teh cat", None, _suggestions(), flags=flags, metadata={"processing_mode": "hybrid"})

        suggestions, metadata = cache.get_entry("Teh cat", flags=flags)

        assert [s.proposed for s in suggestions] == ["The"]
        assert metadata == {"processing_mode": "hybrid"}
        assert cache.get("Teh cat") is None

    def test_clear(self):
        cache = SuggestionCache()
        cache.set("one", None, [])
        cache.clear()
        assert len(cache) == 0
