"""Hybrid grammar checking: local rules first, remote analysis when warranted."""

import logging
import time
import unicodedata

from proofmark.core.decision_engine import decide
from proofmark.core.errors import RemoteAnalysisError, ValidationError
from proofmark.core.local_analyzer import LocalAnalyzer
from proofmark.core.logging import get_logger, log_with_context
from proofmark.core.remote_refiner import RemoteRefiner
from proofmark.core.schemas_grammar import (
    CheckOptions,
    CheckResult,
    ProcessingDecision,
    Suggestion,
)
from proofmark.core.suggestion_cache import SuggestionCache

logger = get_logger(__name__)

DEFAULT_MAX_TEXT_CHARS = 10_000


def merge_suggestions(local: list[Suggestion], remote: list[Suggestion]) -> list[Suggestion]:
    """
    Combine local and remote findings.

    When both flag exactly the same range the more confident one is kept.
    Partial overlaps are left for the reconciler to resolve.
    """
    by_range: dict[tuple[int, int], Suggestion] = {}
    for suggestion in [*local, *remote]:
        key = (suggestion.range.start, suggestion.range.end)
        current = by_range.get(key)
        if current is None or suggestion.confidence > current.confidence:
            by_range[key] = suggestion
    return sorted(by_range.values(), key=lambda s: (s.range.start, s.range.end))


class HybridGrammarService:
    """
    Orchestrates decide -> local -> (remote) -> cache.

    Collaborators are injected so each session (or test) owns its own
    analyzer, refiner and cache.
    """

    def __init__(
        self,
        local: LocalAnalyzer,
        refiner: RemoteRefiner | None = None,
        cache: SuggestionCache | None = None,
        max_text_chars: int = DEFAULT_MAX_TEXT_CHARS,
    ):
        self.local = local
        self.refiner = refiner
        self.cache = cache if cache is not None else SuggestionCache()
        self.max_text_chars = max_text_chars

    async def check_grammar(
        self,
        text: str,
        options: CheckOptions | None = None,
        request_id: int | None = None,
    ) -> CheckResult:
        """
        Check text and return suggestions with processing metadata.

        Args:
            text: Text to check
            options: Feature flags, priority and user tier
            request_id: Caller's request sequence number, attached to log records

        Returns:
            CheckResult (``cached=True`` when served from the cache)

        Raises:
            ValidationError: If the text exceeds the configured maximum
        """
        options = options or CheckOptions()
        started = time.perf_counter()
        normalized = unicodedata.normalize("NFC", text)

        if len(normalized) > self.max_text_chars:
            raise ValidationError(
                f"Text exceeds maximum length of {self.max_text_chars} characters",
                details={"length": len(normalized), "max": self.max_text_chars},
            )

        if not normalized.strip():
            return CheckResult(text=normalized, processing_time_ms=0.0)

        # Priority and tier choose the route, so they are key material here
        flags = options.hybrid_cache_flags()
        hit = self.cache.get_entry(normalized, options, flags=flags)
        if hit is not None:
            cached, metadata = hit
            logger.debug(f"Cache hit for {len(normalized)} chars")
            return CheckResult(
                text=normalized,
                suggestions=cached,
                processing_mode=metadata.get("processing_mode", "local"),
                processing_time_ms=(time.perf_counter() - started) * 1000,
                decision=metadata.get("decision"),
                cached=True,
            )

        decision = decide(normalized, options)
        local_suggestions = await self.local.analyze(normalized, options)

        if decision.use_local_only or self.refiner is None:
            suggestions = local_suggestions
            mode = "local"
            remote_error = None
        else:
            try:
                remote_suggestions = await self.refiner.refine(normalized, None, options) or []
                suggestions = merge_suggestions(local_suggestions, remote_suggestions)
                mode = "hybrid"
                remote_error = None
            except RemoteAnalysisError as e:
                logger.warning(f"Remote analysis failed, falling back to local results: {e.message}")
                suggestions = local_suggestions
                mode = "local"
                remote_error = e
                decision = ProcessingDecision(
                    use_local_only=True,
                    reason="Fallback to local processing due to error",
                    estimated_cost=0.0,
                    estimated_latency_ms=decision.estimated_latency_ms,
                )

        if remote_error is None:
            self.cache.set(
                normalized,
                options,
                suggestions,
                flags=flags,
                metadata={"processing_mode": mode, "decision": decision},
            )

        elapsed_ms = (time.perf_counter() - started) * 1000
        context = {
            "processing_mode": mode,
            "processing_time_ms": round(elapsed_ms, 1),
            "reason": decision.reason,
        }
        if request_id is not None:
            context["request_id"] = request_id
        log_with_context(
            logger,
            logging.INFO,
            f"Grammar check complete: {len(suggestions)} suggestions",
            **context,
        )

        return CheckResult(
            text=normalized,
            suggestions=suggestions,
            processing_mode=mode,
            processing_time_ms=elapsed_ms,
            decision=decision,
            remote_error=remote_error,
        )
