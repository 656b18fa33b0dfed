"""Simple in-memory rate limiter for the grammar API."""

import hashlib
import time
from collections import defaultdict
from typing import Any, Callable

from proofmark.core.errors import RateLimitError
from proofmark.core.logging import get_logger

logger = get_logger(__name__)


def rate_limit_key(token: str) -> str:
    """Bucket key for a bearer token (never store raw tokens)."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]


class RateLimiter:
    """
    Token bucket rate limiter.

    Tracks requests per key (one bucket per API token) and enforces limits.
    Uses in-memory storage, so limits are per process.
    """

    def __init__(
        self,
        requests_per_minute: int = 30,
        burst_size: int = 45,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize rate limiter.

        Args:
            requests_per_minute: Sustained rate limit
            burst_size: Maximum burst size
            clock: Time source in seconds
        """
        self.requests_per_minute = requests_per_minute
        self.burst_size = burst_size
        self.refill_rate = requests_per_minute / 60.0  # tokens per second
        self._clock = clock

        # key -> (tokens, last_refill_time)
        self._buckets: dict[str, tuple[float, float]] = {}
        self._request_counts: dict[str, int] = defaultdict(int)

    def _refill_bucket(self, key: str) -> None:
        now = self._clock()
        current_tokens, last_refill = self._buckets.get(key, (float(self.burst_size), now))

        elapsed = now - last_refill
        new_tokens = min(self.burst_size, current_tokens + elapsed * self.refill_rate)
        self._buckets[key] = (new_tokens, now)

    def check_limit(self, key: str, cost: float = 1.0) -> bool:
        """
        Consume ``cost`` tokens from the bucket for ``key``.

        Returns:
            True if allowed

        Raises:
            RateLimitError: If the bucket does not hold enough tokens
        """
        self._refill_bucket(key)
        current_tokens, last_refill = self._buckets[key]

        if current_tokens >= cost:
            self._buckets[key] = (current_tokens - cost, last_refill)
            self._request_counts[key] += 1
            return True

        retry_after = int((cost - current_tokens) / self.refill_rate) + 1
        logger.warning(
            f"Rate limit exceeded for key: {key}, "
            f"tokens: {current_tokens:.2f}/{self.burst_size}, "
            f"retry after: {retry_after}s"
        )
        raise RateLimitError(
            f"Rate limit exceeded. Try again in {retry_after} seconds.",
            status_code=429,
            details={"retryAfter": retry_after},
            retry_after=retry_after,
        )

    def get_stats(self, key: str) -> dict[str, Any]:
        self._refill_bucket(key)
        current_tokens, _ = self._buckets[key]

        return {
            "tokens_remaining": int(current_tokens),
            "burst_size": self.burst_size,
            "requests_per_minute": self.requests_per_minute,
            "total_requests": self._request_counts.get(key, 0),
        }

    def reset(self, key: str | None = None) -> None:
        """Forget one bucket, or all of them."""
        if key is None:
            self._buckets.clear()
            self._request_counts.clear()
        else:
            self._buckets.pop(key, None)
            self._request_counts.pop(key, None)
