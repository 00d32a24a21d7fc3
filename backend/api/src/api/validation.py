"""Request validation for JSON endpoints.

Checks, in order:
1. Declared Content-Length against the size limit
2. Content-Type is application/json (for methods that carry a body)
3. Body parses as JSON
4. Re-serialized body size against the size limit
5. Optional honeypot fields (``_honeypot`` must be empty, ``_timestamp``
   must be at least MIN_FORM_FILL_MS old)

Routes use ``ValidatedBody(Model)`` as a dependency; it raises
ValidationError on failure and returns the parsed request model.
"""

import json
import time
from typing import Any, Generic, TypeVar

import pydantic
from fastapi import Request
from pydantic import BaseModel

from api.models.common import format_validation_errors
from marketplace.config import MAX_REQUEST_SIZE, MIN_FORM_FILL_MS
from marketplace.models.errors import ErrorCode, ValidationError
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)

BODYLESS_METHODS = {"GET", "HEAD", "OPTIONS"}

M = TypeVar("M", bound=BaseModel)


class ValidationResult(BaseModel):
    """Outcome of validate_request."""

    valid: bool
    body: Any = None
    error: str | None = None
    status: int | None = None
    is_bot: bool = False


def _megabytes(size: int) -> str:
    return f"{size / (1024 * 1024):.1f}MB"


def _is_bot(body: Any, now_ms: int) -> bool:
    if not isinstance(body, dict):
        return False
    if body.get("_honeypot"):
        return True
    submitted = body.get("_timestamp")
    if submitted is None:
        return False
    try:
        form_loaded = int(submitted)
    except (TypeError, ValueError):
        return False
    return now_ms - form_loaded < MIN_FORM_FILL_MS


async def validate_request(
    request: Request,
    max_size: int = MAX_REQUEST_SIZE["default"],
    require_json: bool = True,
    check_honeypot: bool = False,
) -> ValidationResult:
    """Validate size, content type and JSON body of a request.

    Args:
        request: Incoming request
        max_size: Maximum body size in bytes
        require_json: Require an application/json body on non-GET methods
        check_honeypot: Reject bot-like submissions

    Returns:
        ValidationResult with the parsed body when valid
    """
    content_length = request.headers.get("content-length")
    if content_length:
        try:
            declared = int(content_length)
        except ValueError:
            return ValidationResult(
                valid=False, error="Invalid content-length header", status=400
            )
        if declared > max_size:
            return ValidationResult(
                valid=False,
                error=f"Request too large ({_megabytes(declared)}). "
                f"Maximum: {_megabytes(max_size)}",
                status=413,
            )

    if not require_json or request.method in BODYLESS_METHODS:
        return ValidationResult(valid=True)

    content_type = request.headers.get("content-type") or ""
    if "application/json" not in content_type:
        return ValidationResult(
            valid=False, error="Content-Type must be application/json", status=415
        )

    try:
        body = json.loads(await request.body())
    except (ValueError, UnicodeDecodeError):
        return ValidationResult(valid=False, error="Invalid JSON body", status=400)

    size = len(json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8"))
    if size > max_size:
        return ValidationResult(
            valid=False,
            error=f"Request payload too large ({_megabytes(size)}). "
            f"Maximum: {_megabytes(max_size)}",
            status=413,
        )

    if check_honeypot and _is_bot(body, int(time.time() * 1000)):
        return ValidationResult(valid=False, error="Invalid request", status=400, is_bot=True)

    return ValidationResult(valid=True, body=body)


def _error_code(result: ValidationResult) -> ErrorCode:
    if result.is_bot:
        return ErrorCode.BOT_DETECTED
    if result.status == 413:
        return ErrorCode.PAYLOAD_TOO_LARGE
    if result.status == 415:
        return ErrorCode.UNSUPPORTED_MEDIA_TYPE
    if result.error == "Invalid JSON body":
        return ErrorCode.INVALID_JSON
    return ErrorCode.INVALID_REQUEST


async def check_request_size(request: Request) -> None:
    """Dependency for endpoints without a JSON body: size check only."""
    result = await validate_request(request, require_json=False)
    if not result.valid:
        raise ValidationError(_error_code(result), message=result.error)


class ValidatedBody(Generic[M]):
    """Dependency that validates the request and parses it into ``model``.

    Usage:
        @router.post("/refunds")
        async def create_refund(
            body: RefundRequest = Depends(ValidatedBody(RefundRequest)),
        ):
            ...
    """

    def __init__(
        self,
        model: type[M],
        max_size: int = MAX_REQUEST_SIZE["default"],
        check_honeypot: bool = False,
    ) -> None:
        self.model = model
        self.max_size = max_size
        self.check_honeypot = check_honeypot

    async def __call__(self, request: Request) -> M:
        result = await validate_request(
            request, max_size=self.max_size, check_honeypot=self.check_honeypot
        )
        if not result.valid:
            if result.is_bot:
                logger.warning("Bot-like submission rejected on %s", request.url.path)
            raise ValidationError(_error_code(result), message=result.error)

        try:
            return self.model.model_validate(result.body if result.body is not None else {})
        except pydantic.ValidationError as e:
            raise ValidationError(
                ErrorCode.INVALID_REQUEST, details=format_validation_errors(e.errors())
            ) from e
