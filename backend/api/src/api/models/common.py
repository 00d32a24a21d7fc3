"""Shared API request/response models.

This module contains common models used across multiple API endpoints:
error response wrappers, validation error formatting and the rate limit
response body.

Domain models (Transaction, Payout, User, etc.) are in marketplace.models.
This module provides HTTP/API layer specific concerns only.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Re-export ErrorResponse for convenience - this is the standard error format
from marketplace.models.errors import ErrorCode, ErrorResponse

__all__ = [
    "ErrorCode",
    "ErrorResponse",
    "RateLimitResponse",
    "ValidationErrorDetail",
    "format_validation_errors",
]


class ValidationErrorDetail(BaseModel):
    """Detail of a single validation error."""

    model_config = ConfigDict(strict=True)

    loc: list[str | int] = Field(
        ...,
        description="Path to the field that failed validation",
        examples=[["body", "transaction_id"]],
    )
    msg: str = Field(
        ...,
        description="Human-readable error message",
        examples=["Field required"],
    )
    type: str = Field(
        ...,
        description="Error type identifier",
        examples=["missing"],
    )


class RateLimitResponse(BaseModel):
    """Body of a 429 response."""

    error: str = Field(default="Too many requests")
    message: str = Field(default="Rate limit exceeded. Please try again later.")
    retryAfter: int | None = Field(default=None, description="Seconds until a retry may succeed")


def format_validation_errors(errors: list[Any]) -> dict[str, Any]:
    """Convert Pydantic validation errors to an ErrorResponse ``details`` dict.

    Args:
        errors: List of error dicts from Pydantic's ValidationError.errors()

    Returns:
        ``{"errors": [ValidationErrorDetail, ...]}`` as plain JSON-ready data.
    """
    details = [
        ValidationErrorDetail(
            loc=[loc if isinstance(loc, int) else str(loc) for loc in error.get("loc", [])],
            msg=error.get("msg", ""),
            type=error.get("type", ""),
        )
        for error in errors
    ]
    return {"errors": [detail.model_dump() for detail in details]}
