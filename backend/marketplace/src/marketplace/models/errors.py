"""Standard error codes and exception taxonomy.

Every error carries a stable ``ErrorCode`` with a display message. The
exception class encodes the category, which determines the default HTTP
status (see api.exceptions for the code-level overrides):

- AuthError: missing/invalid caller identity (401/403)
- ValidationError: malformed, oversized or wrong content-type input (400/413/415)
- NotFoundError: referenced entity absent (404)
- ConflictError: entity already in a terminal state (400)
- SignatureError: webhook authenticity failure (400)
- DependencyError: external service call failed (500, upstream redelivers)
- ConfigError: required secret/credential missing (500)
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Standard error codes."""

    # Authentication / authorization
    AUTH_REQUIRED = "ERR_AUTH_001"
    FORBIDDEN = "ERR_AUTH_002"
    ADMIN_REQUIRED = "ERR_AUTH_003"

    # Request validation
    INVALID_REQUEST = "ERR_VALIDATION_001"
    INVALID_JSON = "ERR_VALIDATION_002"
    PAYLOAD_TOO_LARGE = "ERR_VALIDATION_003"
    UNSUPPORTED_MEDIA_TYPE = "ERR_VALIDATION_004"
    BOT_DETECTED = "ERR_VALIDATION_005"

    # Missing entities
    TRANSACTION_NOT_FOUND = "ERR_NOT_FOUND_001"
    BOOKING_NOT_FOUND = "ERR_NOT_FOUND_002"
    PAYOUT_NOT_FOUND = "ERR_NOT_FOUND_003"
    USER_NOT_FOUND = "ERR_NOT_FOUND_004"

    # Refunds
    ALREADY_REFUNDED = "ERR_REFUND_001"
    TRANSACTION_NOT_REFUNDABLE = "ERR_REFUND_002"
    MISSING_PAYMENT_REFERENCE = "ERR_REFUND_003"
    INVALID_REFUND_AMOUNT = "ERR_REFUND_004"
    REFUND_EXCEEDS_BALANCE = "ERR_REFUND_005"
    REFUND_IN_PROGRESS = "ERR_REFUND_006"

    # Payouts
    PAYOUT_ALREADY_COMPLETED = "ERR_PAYOUT_001"
    PAYOUT_METHOD_NOT_VERIFIED = "ERR_PAYOUT_002"

    # Subscriptions
    NO_ACTIVE_SUBSCRIPTION = "ERR_SUBSCRIPTION_001"

    # Identity verification
    ALREADY_VERIFIED = "ERR_IDENTITY_001"

    # Stripe / infrastructure
    INVALID_WEBHOOK_SIGNATURE = "ERR_STRIPE_001"
    STRIPE_API_ERROR = "ERR_STRIPE_002"
    WEBHOOK_HANDLER_FAILED = "ERR_STRIPE_003"
    STORAGE_ERROR = "ERR_STORAGE_001"
    CONFIGURATION_MISSING = "ERR_CONFIG_001"
    RATE_LIMITED = "ERR_RATE_LIMIT_001"


# Human-readable error messages
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.AUTH_REQUIRED: "Unauthorized",
    ErrorCode.FORBIDDEN: "Not authorized to perform this action",
    ErrorCode.ADMIN_REQUIRED: "Unauthorized",
    ErrorCode.INVALID_REQUEST: "Invalid request",
    ErrorCode.INVALID_JSON: "Invalid JSON body",
    ErrorCode.PAYLOAD_TOO_LARGE: "Request too large",
    ErrorCode.UNSUPPORTED_MEDIA_TYPE: "Content-Type must be application/json",
    ErrorCode.BOT_DETECTED: "Invalid request",
    ErrorCode.TRANSACTION_NOT_FOUND: "Transaction not found",
    ErrorCode.BOOKING_NOT_FOUND: "Booking not found",
    ErrorCode.PAYOUT_NOT_FOUND: "Payout not found",
    ErrorCode.USER_NOT_FOUND: "User not found",
    ErrorCode.ALREADY_REFUNDED: "Transaction already refunded",
    ErrorCode.TRANSACTION_NOT_REFUNDABLE: "Only completed transactions can be refunded",
    ErrorCode.MISSING_PAYMENT_REFERENCE: "No payment intent found",
    ErrorCode.INVALID_REFUND_AMOUNT: "Refund amount must be positive and in whole cents",
    ErrorCode.REFUND_EXCEEDS_BALANCE: "Refund amount exceeds remaining refundable balance",
    ErrorCode.REFUND_IN_PROGRESS: "Another refund for this transaction is in progress",
    ErrorCode.PAYOUT_ALREADY_COMPLETED: "Payout already completed",
    ErrorCode.PAYOUT_METHOD_NOT_VERIFIED: "No verified Stripe account found for host",
    ErrorCode.NO_ACTIVE_SUBSCRIPTION: "No active subscription found",
    ErrorCode.ALREADY_VERIFIED: "Already verified",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Invalid webhook signature",
    ErrorCode.STRIPE_API_ERROR: "Payment provider request failed",
    ErrorCode.WEBHOOK_HANDLER_FAILED: "Webhook handler failed",
    ErrorCode.STORAGE_ERROR: "Storage request failed",
    ErrorCode.CONFIGURATION_MISSING: "Service is not configured",
    ErrorCode.RATE_LIMITED: "Too many requests",
}


class ErrorResponse(BaseModel):
    """Standard JSON body for error responses."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error: str
    error_code: ErrorCode
    details: Optional[dict[str, Any]] = None


class MarketplaceError(Exception):
    """Base exception for marketplace operations.

    Subclasses set ``status_code`` to the default HTTP status for their
    category. Can be converted to an ErrorResponse for API replies.
    """

    status_code: int = 400

    def __init__(
        self,
        code: ErrorCode,
        details: Optional[dict[str, Any]] = None,
        message: Optional[str] = None,
    ):
        self.code = code
        self.message = message or ERROR_MESSAGES[code]
        self.details = details
        super().__init__(self.message)

    def to_response(self) -> ErrorResponse:
        """Convert this exception to an ErrorResponse."""
        return ErrorResponse(error=self.message, error_code=self.code, details=self.details)


class AuthError(MarketplaceError):
    """Missing or insufficient caller identity."""

    status_code = 401


class ValidationError(MarketplaceError):
    """Malformed, oversized or wrong content-type input."""

    status_code = 400


class NotFoundError(MarketplaceError):
    """Referenced entity does not exist."""

    status_code = 404


class ConflictError(MarketplaceError):
    """Entity is already in a state that forbids the operation."""

    status_code = 400


class SignatureError(MarketplaceError):
    """Webhook payload failed authenticity verification."""

    status_code = 400


class DependencyError(MarketplaceError):
    """An external service (Stripe, DynamoDB) call failed."""

    status_code = 500


class ConfigError(MarketplaceError):
    """Required secret or credential is missing."""

    status_code = 500


# Stripe error codes that indicate the request may succeed on retry
STRIPE_RETRYABLE_ERRORS: set[str] = {
    "processing_error",
    "rate_limit",
    "lock_timeout",
    "api_connection_error",
}


def is_stripe_error_retryable(stripe_error_code: Optional[str]) -> bool:
    """Check if a Stripe error is likely transient and retryable.

    Args:
        stripe_error_code: The Stripe error code.

    Returns:
        True if the error may be resolved by retrying.
    """
    return stripe_error_code in STRIPE_RETRYABLE_ERRORS if stripe_error_code else False
