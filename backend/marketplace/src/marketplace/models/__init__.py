"""Pydantic models for marketplace data entities."""

from .booking import Booking, Listing
from .enums import (
    BookingPaymentStatus,
    BookingStatus,
    IdentityVerificationStatus,
    NotificationType,
    PayoutMethodStatus,
    PayoutMethodType,
    PayoutStatus,
    SubscriptionStatus,
    TransactionStatus,
    TransactionType,
    UserRole,
)
from .errors import (
    ERROR_MESSAGES,
    AuthError,
    ConfigError,
    ConflictError,
    DependencyError,
    ErrorCode,
    ErrorResponse,
    MarketplaceError,
    NotFoundError,
    SignatureError,
    ValidationError,
)
from .notification import Notification
from .payout import Payout, PayoutMethod
from .transaction import Transaction
from .user import User
from .webhook import (
    EVENT_TYPE_FAMILIES,
    EventFamily,
    ProcessingResult,
    WebhookEvent,
    WebhookEventRecord,
)

__all__ = [
    # Enums
    "BookingPaymentStatus",
    "BookingStatus",
    "EventFamily",
    "IdentityVerificationStatus",
    "NotificationType",
    "PayoutMethodStatus",
    "PayoutMethodType",
    "PayoutStatus",
    "ProcessingResult",
    "SubscriptionStatus",
    "TransactionStatus",
    "TransactionType",
    "UserRole",
    # Entities
    "Booking",
    "Listing",
    "Notification",
    "Payout",
    "PayoutMethod",
    "Transaction",
    "User",
    "WebhookEvent",
    "WebhookEventRecord",
    "EVENT_TYPE_FAMILIES",
    # Errors
    "AuthError",
    "ConfigError",
    "ConflictError",
    "DependencyError",
    "ERROR_MESSAGES",
    "ErrorCode",
    "ErrorResponse",
    "MarketplaceError",
    "NotFoundError",
    "SignatureError",
    "ValidationError",
]
