"""FastAPI dependency injection providers for marketplace services.

This module provides factory functions for service instances using @lru_cache
to ensure singleton behavior for the process lifetime. Services are lazily
instantiated and cached.

Usage in routes:
    from api.dependencies import get_refund_service

    @router.post("/refunds")
    async def create_refund(
        refunds: RefundService = Depends(get_refund_service),
    ):
        ...

Service Dependency Graph:
    EntityStore (singleton via get_entity_store, over DynamoDBService)
        ├── NotificationService
        ├── PaymentService
        ├── RefundService ─────── StripeService
        ├── PayoutService ─────── StripeService
        ├── SubscriptionService ─ StripeService
        ├── IdentityService ───── StripeService
        └── WebhookHandler (all of the above)
    RateLimiter (store selected by RATE_LIMIT_BACKEND)

Testing:
    Use reset_services() to clear cached instances between tests.
"""

from functools import lru_cache

from marketplace.services.entity_store import EntityStore, get_entity_store
from marketplace.services.identity_service import IdentityService
from marketplace.services.notification_service import NotificationService
from marketplace.services.payment_service import PaymentService
from marketplace.services.payout_service import PayoutService
from marketplace.services.rate_limiter import RateLimiter, create_rate_limit_store
from marketplace.services.refund_service import RefundService
from marketplace.services.stripe_service import StripeService, get_stripe_service
from marketplace.services.subscription_service import SubscriptionService
from marketplace.services.webhook_handler import WebhookHandler


def get_store() -> EntityStore:
    return get_entity_store()


def get_stripe() -> StripeService:
    return get_stripe_service()


@lru_cache
def get_notification_service() -> NotificationService:
    """Get cached NotificationService instance."""
    return NotificationService(get_entity_store())


@lru_cache
def get_payment_service() -> PaymentService:
    return PaymentService(get_entity_store(), get_notification_service())


@lru_cache
def get_refund_service() -> RefundService:
    """Get cached RefundService instance.

    Returns:
        RefundService configured with the entity store, Stripe and notifications.
    """
    return RefundService(get_entity_store(), get_stripe_service(), get_notification_service())


@lru_cache
def get_payout_service() -> PayoutService:
    return PayoutService(get_entity_store(), get_stripe_service(), get_notification_service())


@lru_cache
def get_subscription_service() -> SubscriptionService:
    return SubscriptionService(
        get_entity_store(), get_stripe_service(), get_notification_service()
    )


@lru_cache
def get_identity_service() -> IdentityService:
    return IdentityService(get_entity_store(), get_stripe_service(), get_notification_service())


@lru_cache
def get_webhook_handler() -> WebhookHandler:
    """Get cached WebhookHandler instance.

    Returns:
        WebhookHandler wired to every reconciliation service.
    """
    return WebhookHandler(
        get_entity_store(),
        payments=get_payment_service(),
        refunds=get_refund_service(),
        payouts=get_payout_service(),
        subscriptions=get_subscription_service(),
        identity=get_identity_service(),
    )


@lru_cache
def get_rate_limiter() -> RateLimiter:
    """Get cached RateLimiter instance (store chosen by RATE_LIMIT_BACKEND)."""
    return RateLimiter(create_rate_limit_store())


def reset_services() -> None:
    """Clear all cached service instances.

    Call this in test fixtures to ensure clean state between tests.
    Also resets the underlying DynamoDB, entity store, Stripe and SSM singletons.

    Example:
        @pytest.fixture(autouse=True)
        def reset_state():
            yield
            reset_services()
    """
    from marketplace.services.dynamodb import reset_dynamodb_service
    from marketplace.services.entity_store import reset_entity_store
    from marketplace.services.ssm_service import get_ssm_service

    # Clear all lru_cache instances
    get_notification_service.cache_clear()
    get_payment_service.cache_clear()
    get_refund_service.cache_clear()
    get_payout_service.cache_clear()
    get_subscription_service.cache_clear()
    get_identity_service.cache_clear()
    get_webhook_handler.cache_clear()
    get_rate_limiter.cache_clear()
    get_stripe_service.cache_clear()
    get_ssm_service.cache_clear()

    # Reset underlying singletons
    reset_entity_store()
    reset_dynamodb_service()
