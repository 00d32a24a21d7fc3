"""Backend services for the marketplace payment core."""

from .dynamodb import DynamoDBService, get_dynamodb_service, reset_dynamodb_service
from .entity_store import EntityStore, get_entity_store, reset_entity_store
from .identity_service import IdentityService
from .notification_service import NotificationService
from .payment_service import PaymentService
from .payout_service import PayoutService
from .rate_limiter import (
    DynamoDBRateLimitStore,
    InMemoryRateLimitStore,
    RateLimiter,
    RateLimitResult,
    RateLimitStore,
    create_rate_limit_store,
)
from .refund_service import RefundService
from .ssm_service import SSMService, SSMServiceError, get_ssm_service
from .stripe_service import StripeService, StripeServiceError, get_stripe_service
from .subscription_service import SubscriptionService
from .webhook_handler import WebhookHandler

__all__ = [
    "DynamoDBService",
    "get_dynamodb_service",
    "reset_dynamodb_service",
    "EntityStore",
    "get_entity_store",
    "reset_entity_store",
    "IdentityService",
    "NotificationService",
    "PaymentService",
    "PayoutService",
    "DynamoDBRateLimitStore",
    "InMemoryRateLimitStore",
    "RateLimiter",
    "RateLimitResult",
    "RateLimitStore",
    "create_rate_limit_store",
    "RefundService",
    "SSMService",
    "SSMServiceError",
    "get_ssm_service",
    "StripeService",
    "StripeServiceError",
    "get_stripe_service",
    "SubscriptionService",
    "WebhookHandler",
]
