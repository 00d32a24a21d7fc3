"""Subscription endpoints.

Provides REST endpoints for:
- POST /subscriptions/cancel - Cancel at the end of the billing period (JWT required)
"""

from fastapi import APIRouter, Depends

from api.dependencies import get_subscription_service
from api.models.common import ErrorResponse, RateLimitResponse
from api.models.subscriptions import CancelSubscriptionResponse
from api.rate_limit import RateLimit
from api.security import get_current_user
from api.validation import check_request_size
from marketplace.models.user import User
from marketplace.services.rate_limiter import RateLimitResult
from marketplace.services.subscription_service import SubscriptionService

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.post(
    "/cancel",
    summary="Cancel subscription",
    description="""
Schedule the caller's subscription to cancel at the end of the current
billing period. The user is marked canceled immediately.

**Requires JWT authentication.**
""",
    response_model=CancelSubscriptionResponse,
    responses={
        400: {"description": "No active subscription", "model": ErrorResponse},
        401: {"description": "Authentication required", "model": ErrorResponse},
        429: {"description": "Rate limit exceeded", "model": RateLimitResponse},
        500: {"description": "Stripe update failed", "model": ErrorResponse},
    },
)
async def cancel_subscription(
    _: None = Depends(check_request_size),
    rate_limit: RateLimitResult = Depends(RateLimit("subscription")),
    user: User = Depends(get_current_user),
    subscriptions: SubscriptionService = Depends(get_subscription_service),
) -> CancelSubscriptionResponse:
    result = await subscriptions.cancel_subscription(user)
    return CancelSubscriptionResponse(**result)
