"""FastAPI exception handlers for converting MarketplaceError to HTTP responses.

This module provides exception handlers that convert domain errors
(MarketplaceError and subclasses) to HTTP responses with a consistent JSON
structure: ``{success: false, error, error_code, details}``.

The status comes from the exception class (see marketplace.models.errors),
overridden per ErrorCode where a more specific REST status applies:
- 403 Forbidden: authenticated but not allowed
- 413 Payload Too Large: body over the size limit
- 415 Unsupported Media Type: body is not JSON

Rate limit denials (429) and request model errors (400) have their own
handlers.

Usage:
    Register handlers in FastAPI app:

    from api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_403_FORBIDDEN,
    HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    HTTP_429_TOO_MANY_REQUESTS,
)

from api.models.common import RateLimitResponse, format_validation_errors
from api.rate_limit import RateLimitExceeded, rate_limit_headers
from marketplace.models.errors import ErrorCode, ErrorResponse, MarketplaceError
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)

# ErrorCodes whose status differs from their exception class default
ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.FORBIDDEN: HTTP_403_FORBIDDEN,
    ErrorCode.ADMIN_REQUIRED: HTTP_403_FORBIDDEN,
    ErrorCode.PAYLOAD_TOO_LARGE: 413,
    ErrorCode.UNSUPPORTED_MEDIA_TYPE: HTTP_415_UNSUPPORTED_MEDIA_TYPE,
}


def get_http_status_for_error(exc: MarketplaceError) -> int:
    """Get HTTP status code for a MarketplaceError.

    Args:
        exc: The raised error

    Returns:
        HTTP status code from the code map, else the exception class default.
    """
    return ERROR_CODE_TO_HTTP_STATUS.get(exc.code, exc.status_code)


async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    """Handle MarketplaceError exceptions and convert to JSON response.

    Args:
        request: The incoming request
        exc: The MarketplaceError exception

    Returns:
        JSONResponse with error details and appropriate status code.
    """
    status_code = get_http_status_for_error(exc)
    if status_code >= 500:
        logger.error(
            "%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code.value
        )

    return JSONResponse(
        status_code=status_code,
        content=exc.to_response().model_dump(mode="json"),
    )


async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Answer request model errors with 400 in the standard error format."""
    body = ErrorResponse(
        error="Invalid request",
        error_code=ErrorCode.INVALID_REQUEST,
        details=format_validation_errors(list(exc.errors())),
    )
    return JSONResponse(status_code=HTTP_400_BAD_REQUEST, content=body.model_dump(mode="json"))


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Answer a rate limit denial with 429, Retry-After and X-RateLimit-* headers."""
    return JSONResponse(
        status_code=HTTP_429_TOO_MANY_REQUESTS,
        content=RateLimitResponse(retryAfter=exc.result.retry_after).model_dump(),
        headers=rate_limit_headers(exc.result),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app.

    Call this function during app initialization to enable
    consistent error handling across all routes.

    Args:
        app: The FastAPI application instance.

    Example:
        app = FastAPI()
        register_exception_handlers(app)
    """
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(
        RequestValidationError, request_validation_error_handler  # type: ignore[arg-type]
    )
    app.add_exception_handler(
        RateLimitExceeded, rate_limit_exceeded_handler  # type: ignore[arg-type]
    )
