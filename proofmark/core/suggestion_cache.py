"""Content-addressed suggestion cache with TTL eviction."""

import hashlib
import json
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable

from proofmark.core.logging import get_logger
from proofmark.core.schemas_grammar import CheckOptions, Suggestion

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 300.0


@dataclass
class _CacheEntry:
    suggestions: list[Suggestion]
    stored_at: float
    expires_at: float
    metadata: dict[str, Any] = field(default_factory=dict)


def make_cache_key(
    text: str,
    options: CheckOptions | None = None,
    flags: dict[str, Any] | None = None,
) -> str:
    """
    Derive a fixed-length key from text and the option flags that affect output.

    Only surrounding whitespace is normalized; case is preserved because
    case changes what analyzers report. ``flags`` overrides the option
    flags when the caller's output depends on more than the feature toggles.
    """
    if flags is None:
        flags = (options or CheckOptions()).cache_flags()
    encoded = json.dumps(flags, sort_keys=True, separators=(",", ":"))
    combined = f"{text.strip()}\x00{encoded}"
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()


class SuggestionCache:
    """
    In-memory suggestion cache.

    Entries expire ``ttl_seconds`` after being stored and are evicted lazily
    when read. ``sweep()`` drops every expired entry for memory hygiene, and
    ``max_entries`` bounds the store by evicting the oldest entries.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._store: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._hits = 0
        self._misses = 0

    def get(self, text: str, options: CheckOptions | None = None) -> list[Suggestion] | None:
        """Return cached suggestions, or None on miss or expiry."""
        hit = self.get_entry(text, options)
        return None if hit is None else hit[0]

    def get_entry(
        self,
        text: str,
        options: CheckOptions | None = None,
        flags: dict[str, Any] | None = None,
    ) -> tuple[list[Suggestion], dict[str, Any]] | None:
        """Return (suggestions, metadata) for a live entry, or None."""
        key = make_cache_key(text, options, flags)
        entry = self._store.get(key)
        if entry is None:
            self._misses += 1
            return None

        if self._clock() >= entry.expires_at:
            del self._store[key]
            self._misses += 1
            logger.debug(f"Cache entry expired: {key[:12]}")
            return None

        self._hits += 1
        return [s.model_copy() for s in entry.suggestions], dict(entry.metadata)

    def set(
        self,
        text: str,
        options: CheckOptions | None,
        suggestions: list[Suggestion],
        ttl_seconds: float | None = None,
        flags: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Store suggestions (and optional metadata) for (text, options)."""
        key = make_cache_key(text, options, flags)
        now = self._clock()
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds

        self._store.pop(key, None)
        self._store[key] = _CacheEntry(
            suggestions=[s.model_copy() for s in suggestions],
            stored_at=now,
            expires_at=now + ttl,
            metadata=dict(metadata or {}),
        )

        if self.max_entries is not None:
            while len(self._store) > self.max_entries:
                evicted, _ = self._store.popitem(last=False)
                logger.debug(f"Cache full, evicted oldest entry: {evicted[:12]}")

    def clear(self) -> None:
        """Drop the whole store."""
        self._store = OrderedDict()

    def sweep(self) -> int:
        """Evict every expired entry. Returns the number evicted."""
        now = self._clock()
        expired = [key for key, entry in self._store.items() if now >= entry.expires_at]
        for key in expired:
            del self._store[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._store)

    def stats(self) -> dict:
        total = self._hits + self._misses
        return {
            "size": len(self._store),
            "ttl_seconds": self.ttl_seconds,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": (self._hits / total) if total else 0.0,
        }
