"""Routing decision between local-only and hybrid (local + remote) analysis."""

import math

from proofmark.core.schemas_grammar import CheckOptions, ProcessingDecision

MAX_REMOTE_WORDS = 2000
MAX_COST_PER_CHECK = 0.05  # USD
FREE_TIER_MAX_COST = 0.01  # USD
COST_PER_1K_TOKENS = 0.005  # USD, gpt-4o input pricing
CHARS_PER_TOKEN = 4
LOCAL_LATENCY_MS = 50


def count_words(text: str) -> int:
    """Whitespace-delimited word count."""
    return len(text.split())


def estimate_cost(text: str) -> float:
    """Rough remote cost estimate from character count."""
    tokens = math.ceil(len(text) / CHARS_PER_TOKEN)
    return (tokens / 1000) * COST_PER_1K_TOKENS


def decide(text: str, options: CheckOptions | None = None) -> ProcessingDecision:
    """
    Decide whether a check may escalate to the remote analyzer.

    Pure function: the same (text, options) always yields the same decision.

    Args:
        text: Text to analyze
        options: Requested features, priority and user tier

    Returns:
        ProcessingDecision with a human-readable reason
    """
    options = options or CheckOptions()
    word_count = count_words(text)
    estimated_cost = estimate_cost(text)
    estimated_latency = max(1000, word_count * 2)

    if estimated_cost > MAX_COST_PER_CHECK:
        return ProcessingDecision(
            use_local_only=True,
            reason=(
                f"Estimated cost (${estimated_cost:.3f}) exceeds per-check limit "
                f"(${MAX_COST_PER_CHECK:.2f})"
            ),
            estimated_cost=estimated_cost,
            estimated_latency_ms=LOCAL_LATENCY_MS,
        )

    if word_count > MAX_REMOTE_WORDS:
        return ProcessingDecision(
            use_local_only=True,
            reason=f"Word count ({word_count}) exceeds remote threshold ({MAX_REMOTE_WORDS})",
            estimated_cost=0.0,
            estimated_latency_ms=min(200, int(word_count * 0.1)),
        )

    if options.user_tier == "free" and estimated_cost > FREE_TIER_MAX_COST:
        return ProcessingDecision(
            use_local_only=True,
            reason="Free tier cost optimization",
            estimated_cost=0.0,
            estimated_latency_ms=100,
        )

    if options.priority == "fast":
        return ProcessingDecision(
            use_local_only=True,
            reason="Fast priority selected",
            estimated_cost=0.0,
            estimated_latency_ms=LOCAL_LATENCY_MS,
        )

    if options.include_style or options.priority == "quality":
        return ProcessingDecision(
            use_local_only=False,
            reason="Style analysis or quality priority requested",
            estimated_cost=estimated_cost,
            estimated_latency_ms=estimated_latency,
        )

    return ProcessingDecision(
        use_local_only=True,
        reason="Default local-only processing",
        estimated_cost=0.0,
        estimated_latency_ms=100,
    )
