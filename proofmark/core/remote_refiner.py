"""Client for the remote grammar analysis service."""

import inspect
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Protocol

import httpx

from proofmark.core.errors import AuthError, NetworkError, RateLimitError, RemoteAnalysisError
from proofmark.core.logging import get_logger
from proofmark.core.schemas_grammar import (
    CheckOptions,
    GrammarCheckRequest,
    Suggestion,
    parse_suggestions,
    to_wire,
)

logger = get_logger(__name__)

TokenProvider = Callable[[], str | None | Awaitable[str | None]]


class RemoteRefiner(Protocol):
    """Anything that can produce suggestions remotely."""

    async def refine(
        self,
        text: str,
        target: Suggestion | None = None,
        options: CheckOptions | None = None,
    ) -> list[Suggestion] | None:
        """
        Analyze ``text`` (whole document) or improve one ``target`` suggestion.

        Returns None when nothing better than the existing suggestion exists.
        """
        ...


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _error_from_response(response: httpx.Response) -> RemoteAnalysisError:
    """Translate a failed HTTP response into the error taxonomy."""
    message = f"Remote analysis failed with status {response.status_code}"
    details = None
    try:
        body = response.json()
        error = body.get("error") or {}
        message = error.get("message") or message
        details = error.get("details")
    except (ValueError, AttributeError):
        pass

    status = response.status_code
    if status in (401, 403):
        return AuthError(message, status_code=status, details=details)
    if status == 429:
        return RateLimitError(
            message,
            status_code=status,
            details=details,
            retry_after=_parse_retry_after(response.headers.get("Retry-After")),
        )
    return RemoteAnalysisError(message, status_code=status, details=details)


DEFAULT_MEMO_SIZE = 128


class HttpRemoteRefiner:
    """
    Remote refiner backed by the grammar HTTP service.

    Whole-document checks call ``POST {base_url}/grammar/check``; single
    suggestion refinement calls ``POST {base_url}/grammar/refine``. Successful
    results are memoized per input so repeated calls do not hit the network;
    the memo keeps the ``memo_size`` most recently used results.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider | None = None,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
        memo_size: int = DEFAULT_MEMO_SIZE,
    ):
        self.base_url = base_url.rstrip("/")
        self.memo_size = memo_size
        self._token_provider = token_provider
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._memo: OrderedDict[tuple, list[Suggestion] | None] = OrderedDict()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token_provider is None:
            return headers

        token = self._token_provider()
        if inspect.isawaitable(token):
            token = await token
        if not token:
            raise AuthError("Not signed in: no token available for remote analysis")

        headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        url = f"{self.base_url}{path}"
        headers = await self._headers()

        try:
            response = await self._client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Remote analysis timed out: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Remote analysis unreachable: {e}") from e

        if response.status_code >= 400:
            error = _error_from_response(response)
            logger.warning(
                f"Remote call {path} failed: status={response.status_code} "
                f"category={error.category} message={error.message}"
            )
            raise error

        try:
            body = response.json()
        except ValueError as e:
            raise RemoteAnalysisError("Remote analysis returned invalid JSON", response.status_code) from e

        if not isinstance(body, dict) or "data" not in body:
            raise RemoteAnalysisError(
                "Remote analysis returned an unexpected body", response.status_code, details=body
            )
        return body["data"]

    async def refine(
        self,
        text: str,
        target: Suggestion | None = None,
        options: CheckOptions | None = None,
    ) -> list[Suggestion] | None:
        """
        Run a remote check or refine one suggestion.

        Args:
            text: Current document text
            target: Suggestion to improve, or None for a whole-document check
            options: Feature flags forwarded to whole-document checks

        Returns:
            Validated suggestions. For refinement, a one-element list or None
            when the service has nothing better.

        Raises:
            AuthError, RateLimitError, NetworkError, RemoteAnalysisError
        """
        options = options or CheckOptions()
        key = self._memo_key(text, target, options)
        if key in self._memo:
            logger.debug("Remote refiner memo hit")
            self._memo.move_to_end(key)
            return self._copy(self._memo[key])

        if target is None:
            result = await self._check(text, options)
        else:
            result = await self._refine_one(text, target)

        self._memo[key] = self._copy(result)
        while len(self._memo) > self.memo_size:
            self._memo.popitem(last=False)
        return result

    async def _check(self, text: str, options: CheckOptions) -> list[Suggestion]:
        request = GrammarCheckRequest(
            text=text,
            language=options.language,
            include_spelling=options.include_spelling,
            include_grammar=options.include_grammar,
            include_style=options.include_style,
        )
        data = await self._post("/grammar/check", request.model_dump(by_alias=True))

        if not isinstance(data, dict):
            raise RemoteAnalysisError("Remote check returned no data payload", details=data)

        suggestions = parse_suggestions(data.get("suggestions", []), text)
        logger.info(f"Remote check returned {len(suggestions)} suggestions (cached={data.get('cached', False)})")
        return suggestions

    async def _refine_one(self, text: str, target: Suggestion) -> list[Suggestion] | None:
        data = await self._post("/grammar/refine", {"text": text, "suggestion": to_wire(target)})

        raw = data.get("suggestion") if isinstance(data, dict) else None
        if raw is None:
            logger.info(f"No refinement available for suggestion {target.id}")
            return None

        parsed = parse_suggestions([raw], text)
        if not parsed:
            return None

        refined = parsed[0]
        if not refined.proposed or refined.proposed == target.proposed:
            logger.info(f"Refinement for {target.id} is not an improvement")
            return None

        return [refined]

    @staticmethod
    def _memo_key(text: str, target: Suggestion | None, options: CheckOptions) -> tuple:
        if target is None:
            return ("check", text, tuple(sorted(options.cache_flags().items())))
        return ("refine", text, target.id, target.range.start, target.range.end, target.proposed)

    @staticmethod
    def _copy(result: list[Suggestion] | None) -> list[Suggestion] | None:
        if result is None:
            return None
        return [s.model_copy() for s in result]
