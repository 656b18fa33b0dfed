"""API endpoints for remote grammar analysis."""

import json
import time
from typing import Any, Iterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from proofmark.chains.check_grammar import (
    check_grammar_with_openai,
    parse_tool_arguments,
    stream_grammar_check,
)
from proofmark.chains.refine_suggestion import refine_suggestion_with_openai
from proofmark.core.config import Settings, get_settings
from proofmark.core.errors import AuthError, RemoteAnalysisError, ValidationError
from proofmark.core.logging import get_logger
from proofmark.core.rate_limiter import RateLimiter, rate_limit_key
from proofmark.core.schemas_grammar import (
    GrammarCheckRequest,
    GrammarCheckResponse,
    RefineRequest,
    Suggestion,
    parse_suggestions,
    to_wire,
)
from proofmark.core.suggestion_cache import SuggestionCache

logger = get_logger(__name__)

router = APIRouter()

# HTTP Bearer scheme for Authorization header
security = HTTPBearer(auto_error=False)


def require_api_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    settings: Settings = Depends(get_settings),
) -> str:
    """Validate the bearer token against the configured API tokens."""
    if credentials is None or not credentials.credentials:
        raise AuthError("Unauthorized", status_code=401)
    if credentials.credentials not in settings.api_tokens:
        logger.warning("Rejected request with unknown API token")
        raise AuthError("Unauthorized", status_code=401)
    return credentials.credentials


def get_grammar_cache(request: Request) -> SuggestionCache:
    return request.app.state.grammar_cache


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def _check_text_length(text: str, settings: Settings) -> None:
    if len(text) > settings.MAX_TEXT_CHARS:
        raise ValidationError(
            "Invalid request data",
            details={"text": f"must be at most {settings.MAX_TEXT_CHARS} characters"},
        )


def _response_payload(
    suggestions: list[Suggestion], text: str, cached: bool, started: float
) -> dict[str, Any]:
    response = GrammarCheckResponse.model_validate(
        {
            "suggestions": [to_wire(s) for s in suggestions],
            "processedText": text,
            "cached": cached,
            "processingTimeMs": round((time.perf_counter() - started) * 1000, 2),
        }
    )
    return response.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.post("/grammar/check", response_model=None)
def check_grammar(
    body: GrammarCheckRequest,
    token: str = Depends(require_api_token),
    settings: Settings = Depends(get_settings),
    cache: SuggestionCache = Depends(get_grammar_cache),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> dict[str, Any] | StreamingResponse:
    """
    Check text for grammar, spelling and (optionally) style issues.

    Results are cached per text and option flags. With ``stream=true`` the
    response is a server-sent event stream of ``chunk`` events followed by
    one ``complete`` (or ``error``) event.

    Raises:
        AuthError 401, RateLimitError 429, ValidationError 400,
        RemoteAnalysisError 5xx
    """
    started = time.perf_counter()
    limiter.check_limit(rate_limit_key(token))
    _check_text_length(body.text, settings)

    options = body.to_options()
    cached = cache.get(body.text, options)
    if cached is not None:
        logger.info(f"Grammar check served from cache ({len(body.text)} chars, {len(cached)} suggestions)")
        return {"success": True, "data": _response_payload(cached, body.text, True, started)}

    if body.stream:
        return StreamingResponse(
            _stream_events(body, settings, cache, started),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    suggestions = check_grammar_with_openai(
        body.text,
        settings=settings,
        include_spelling=body.include_spelling,
        include_grammar=body.include_grammar,
        include_style=body.include_style,
    )
    cache.set(body.text, options, suggestions)

    logger.info(
        f"Grammar check completed: {len(suggestions)} suggestions in "
        f"{(time.perf_counter() - started) * 1000:.0f}ms"
    )
    return {"success": True, "data": _response_payload(suggestions, body.text, False, started)}


def _stream_events(
    body: GrammarCheckRequest,
    settings: Settings,
    cache: SuggestionCache,
    started: float,
) -> Iterator[str]:
    buffer = []
    try:
        for chunk in stream_grammar_check(
            body.text,
            settings=settings,
            include_spelling=body.include_spelling,
            include_grammar=body.include_grammar,
            include_style=body.include_style,
        ):
            buffer.append(chunk)
            yield f"data: {json.dumps({'type': 'chunk', 'content': chunk})}\n\n"
    except RemoteAnalysisError as e:
        yield f"data: {json.dumps({'type': 'error', 'error': e.message})}\n\n"
        return

    suggestions = parse_tool_arguments("".join(buffer), body.text)
    cache.set(body.text, body.to_options(), suggestions)
    payload = _response_payload(suggestions, body.text, False, started)
    yield f"data: {json.dumps({'type': 'complete', 'data': payload})}\n\n"


@router.post("/grammar/refine")
def refine_suggestion(
    body: RefineRequest,
    token: str = Depends(require_api_token),
    settings: Settings = Depends(get_settings),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> dict[str, Any]:
    """
    Regenerate one suggestion with sentence context.

    Returns ``{"suggestion": null}`` when no better replacement exists.
    """
    limiter.check_limit(rate_limit_key(token))
    _check_text_length(body.text, settings)

    parsed = parse_suggestions([body.suggestion.model_dump(mode="json", by_alias=True, exclude_none=True)], body.text)
    if not parsed or not parsed[0].matches(body.text):
        raise ValidationError(
            "Invalid request data",
            details={"suggestion": "original text does not match the text at its range"},
        )

    refined = refine_suggestion_with_openai(body.text, parsed[0], settings=settings)
    return {"success": True, "data": {"suggestion": to_wire(refined) if refined else None}}
