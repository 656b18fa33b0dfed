"""FastAPI application entry point."""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from proofmark.api import router as api_router
from proofmark.core.config import Settings, get_settings
from proofmark.core.errors import (
    AuthError,
    NetworkError,
    ProofmarkError,
    RateLimitError,
    RemoteAnalysisError,
    StaleSuggestionError,
    ValidationError,
)
from proofmark.core.logging import get_logger
from proofmark.core.rate_limiter import RateLimiter
from proofmark.core.suggestion_cache import SuggestionCache

logger = get_logger(__name__)


def error_response(status: int, message: str, details: object | None = None, headers: dict | None = None) -> JSONResponse:
    """Error body shared by every endpoint: ``{"error": {message, code, details}}``."""
    return JSONResponse(
        status_code=status,
        content={"error": {"message": message, "code": status, "details": details}},
        headers=headers,
    )


def status_for(error: ProofmarkError) -> int:
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, AuthError):
        return 401
    if isinstance(error, RateLimitError):
        return 429
    if isinstance(error, StaleSuggestionError):
        return 409
    if isinstance(error, NetworkError):
        return 503
    if isinstance(error, RemoteAnalysisError) and error.status_code and error.status_code >= 400:
        return error.status_code
    return 500


async def proofmark_error_handler(request: Request, exc: ProofmarkError) -> JSONResponse:
    status = status_for(exc)
    message = getattr(exc, "message", str(exc))
    details = getattr(exc, "details", None)
    headers = None
    if isinstance(exc, RateLimitError) and exc.retry_after is not None:
        headers = {"Retry-After": str(int(exc.retry_after))}

    logger.error(f"Error {status}: {message}")
    return error_response(status, message, details, headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning(f"Invalid request data: {len(exc.errors())} errors")
    details = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    return error_response(400, "Invalid request data", details)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return error_response(exc.status_code, str(exc.detail), None, exc.headers)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.url.path}: {exc}")
    return error_response(500, "Internal server error", str(exc))


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application with its own cache and rate limiter."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Proofmark",
        description="Grammar analysis service for the suggestion lifecycle engine",
        version="0.1.0",
    )
    app.state.grammar_cache = SuggestionCache(
        ttl_seconds=settings.SERVICE_CACHE_TTL_SECONDS,
        max_entries=settings.CACHE_MAX_ENTRIES,
    )
    app.state.rate_limiter = RateLimiter(
        requests_per_minute=settings.RATE_LIMIT_PER_MINUTE,
        burst_size=settings.RATE_LIMIT_BURST,
    )

    app.add_exception_handler(ProofmarkError, proofmark_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.get("/health")
    async def health_check() -> JSONResponse:
        """Health check endpoint."""
        return JSONResponse(content={"status": "ok"}, status_code=200)

    # Include v1 API router
    app.include_router(api_router, prefix="/v1", tags=["v1"])
    return app


app = create_app()
