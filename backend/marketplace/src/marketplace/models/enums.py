"""Enumeration types for marketplace data models."""

from enum import Enum


class TransactionType(str, Enum):
    """Kind of money movement recorded by a transaction."""

    CHARGE = "charge"
    REFUND = "refund"


class TransactionStatus(str, Enum):
    """Status of a payment transaction.

    Moves forward only: pending -> completed -> refunded, or pending -> failed.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class BookingStatus(str, Enum):
    """Status of a booking."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class BookingPaymentStatus(str, Enum):
    """Payment status for a booking."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PayoutStatus(str, Enum):
    """Status of a host payout. COMPLETED is terminal; FAILED may be retried."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PayoutMethodType(str, Enum):
    """Supported payout destinations."""

    STRIPE = "stripe"
    BANK_ACCOUNT = "bank_account"


class PayoutMethodStatus(str, Enum):
    """Verification status of a payout method."""

    PENDING_VERIFICATION = "pending_verification"
    VERIFIED = "verified"
    FAILED = "failed"


class SubscriptionStatus(str, Enum):
    """Known subscription states.

    The user record mirrors Stripe's status string verbatim, so values
    outside this enum (e.g. "incomplete", "unpaid") may also be stored.
    """

    NONE = "none"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class IdentityVerificationStatus(str, Enum):
    """Status of a user's identity verification check."""

    NONE = "none"
    PENDING = "pending"
    VERIFIED = "verified"
    REQUIRES_INPUT = "requires_input"
    CANCELED = "canceled"


class UserRole(str, Enum):
    """Caller roles."""

    USER = "user"
    ADMIN = "admin"


class NotificationType(str, Enum):
    """Notification categories shown to users."""

    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    PAYMENT = "payment"
    PAYOUT = "payout"
    SALE_PURCHASE = "sale_purchase"
    VERIFICATION = "verification"
