"""Tests for the local/hybrid routing decision."""

from proofmark.core.decision_engine import (
    MAX_REMOTE_WORDS,
    count_words,
    decide,
    estimate_cost,
)
from proofmark.core.schemas_grammar import CheckOptions


def test_default_is_local_only():
    """Without style or quality priority the check stays local."""
    decision = decide("A short sentence.", CheckOptions(include_style=False))

    assert decision.use_local_only is True
    assert decision.reason == "Default local-only processing"
    assert decision.estimated_cost == 0.0


def test_style_requests_remote():
    """Style analysis escalates to the remote analyzer."""
    decision = decide("A short sentence.", CheckOptions(include_style=True))

    assert decision.use_local_only is False
    assert decision.estimated_cost > 0
    assert decision.estimated_latency_ms >= 1000


def test_quality_priority_requests_remote():
    """Quality priority escalates even without style."""
    decision = decide("Some text.", CheckOptions(include_style=False, priority="quality"))

    assert decision.use_local_only is False


def test_fast_priority_stays_local():
    """Fast priority wins over a style request."""
    decision = decide("Some text.", CheckOptions(include_style=True, priority="fast"))

    assert decision.use_local_only is True
    assert decision.reason == "Fast priority selected"


def test_long_text_exceeds_word_threshold():
    """Texts above the remote word threshold stay local."""
    text = "word " * (MAX_REMOTE_WORDS + 1)
    decision = decide(text, CheckOptions(include_style=True))

    assert decision.use_local_only is True
    assert "Word count" in decision.reason


def test_cost_cap():
    """Texts whose estimated cost exceeds the per-check cap stay local."""
    text = "x" * 50_000
    decision = decide(text, CheckOptions(include_style=True))

    assert decision.use_local_only is True
    assert "exceeds per-check limit" in decision.reason


def test_free_tier_cost_optimization():
    """Free users stay local once the estimate passes the free-tier budget."""
    text = "abcdefghi " * 900
    decision = decide(text, CheckOptions(include_style=True, user_tier="free"))

    assert decision.use_local_only is True
    assert decision.reason == "Free tier cost optimization"


def test_decision_is_deterministic():
    """Same input, same decision."""
    options = CheckOptions(include_style=True)
    assert decide("Same text here.", options) == decide("Same text here.", options)


def test_helpers():
    """Word count and cost estimation."""
    assert count_words("  one two\nthree ") == 3
    assert estimate_cost("x" * 4000) == 0.005
