"""Exception handlers rendering every failure as the same JSON envelope.

Body shape: ``{"error": {"code", "message", "request_id", "details"?}}``.

- Domain errors map to their status (400, 429, 502, 503, 500)
- 429 and 503 carry ``Retry-After``; 503 is never cached by proxies
- Rejections on rate-limited routes keep their X-RateLimit-* headers
- Anything else is a generic 500 that leaks no internals
"""

import logging
from fastapi import Request
from fastapi.responses import JSONResponse

from ipmap.core.errors import (
    AppError,
    CacheStorageError,
    DataNotReadyError,
    RateLimitExceededError,
    UpstreamFetchError,
    ValidationAppError,
)
from ipmap.core.logging import get_request_id

logger = logging.getLogger(__name__)

NO_STORE = "no-cache, no-store, must-revalidate"


def _status_for(exc: AppError) -> int:
    if isinstance(exc, RateLimitExceededError):
        return 429
    if isinstance(exc, DataNotReadyError):
        return 503
    if isinstance(exc, UpstreamFetchError):
        return 502
    if isinstance(exc, CacheStorageError):
        return 500
    if isinstance(exc, ValidationAppError):
        return 400
    return 400


def _rate_limit_headers(request: Request) -> dict[str, str]:
    return dict(getattr(request.state, "rate_limit_headers", None) or {})


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an AppError with the status its type maps to.

    Args:
        request: Incoming request; its state may hold rate-limit headers.
        exc: The domain error.

    Returns:
        JSONResponse carrying the error envelope.
    """
    status_code = _status_for(exc)

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        }
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }

    if exc.details:
        error_content["details"] = exc.details

    headers = _rate_limit_headers(request)
    retry_after = (exc.details or {}).get("retry_after")
    if isinstance(exc, (RateLimitExceededError, DataNotReadyError)) and retry_after is not None:
        headers["Retry-After"] = str(retry_after)
    if isinstance(exc, DataNotReadyError):
        headers["Cache-Control"] = NO_STORE

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
        headers=headers or None,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log an unexpected exception and answer with an opaque 500."""
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        }
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
        headers=_rate_limit_headers(request) or None,
    )


def setup_exception_handlers(app) -> None:
    """Install the AppError handler and the catch-all fallback on ``app``."""
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
