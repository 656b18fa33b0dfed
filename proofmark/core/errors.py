"""Error taxonomy for the suggestion lifecycle engine.

Validation and stale-suggestion errors are filtered out quietly by the
engine. Remote errors carry a category (``auth``, ``rate_limit`` or
``generic``) so callers can surface a sign-in prompt, a retry-later state or
a retry affordance.
"""


class ProofmarkError(Exception):
    """Base class for all engine errors."""


class ValidationError(ProofmarkError):
    """Bad input: empty or oversized text, malformed suggestion shape."""

    def __init__(self, message: str, details: object | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class StaleSuggestionError(ProofmarkError):
    """Suggestion text no longer matches the document."""

    def __init__(self, suggestion_id: str, original: str):
        super().__init__(f"Suggestion {suggestion_id} is stale: '{original}' not found in document")
        self.suggestion_id = suggestion_id
        self.original = original


class RemoteAnalysisError(ProofmarkError):
    """Generic remote analysis failure (validation, 5xx, malformed body)."""

    category = "generic"
    retryable = False

    def __init__(self, message: str, status_code: int | None = None, details: object | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


class AuthError(RemoteAnalysisError):
    """Remote call was not authenticated. Users should sign in again."""

    category = "auth"


class RateLimitError(RemoteAnalysisError):
    """Remote service rate limit hit. Retry after ``retry_after`` seconds."""

    category = "rate_limit"
    retryable = True

    def __init__(
        self,
        message: str,
        status_code: int | None = 429,
        details: object | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, status_code=status_code, details=details)
        self.retry_after = retry_after


class NetworkError(RemoteAnalysisError):
    """Transport failure or timeout talking to the remote service."""

    retryable = True
