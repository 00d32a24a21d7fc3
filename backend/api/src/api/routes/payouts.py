"""Payout endpoints.

Provides REST endpoints for:
- POST /payouts - Transfer a payout to the host's Stripe account (admin only)
"""

from fastapi import APIRouter, Depends

from api.dependencies import get_payout_service
from api.models.common import ErrorResponse, RateLimitResponse
from api.models.payouts import PayoutRequest, PayoutResponse
from api.rate_limit import RateLimit
from api.security import require_admin
from api.validation import ValidatedBody
from marketplace.models.user import User
from marketplace.services.payout_service import PayoutService
from marketplace.services.rate_limiter import RateLimitResult

router = APIRouter(tags=["payouts"])


@router.post(
    "/payouts",
    summary="Process a host payout",
    description="""
Transfer a payout's net amount to the host's verified Stripe Connect account.

**Requires admin role.**

A completed payout is never transferred again. A host without a verified
Stripe payout method gets the payout marked failed and no transfer is made.
""",
    response_model=PayoutResponse,
    responses={
        400: {
            "description": "Payout already completed or host has no verified account",
            "model": ErrorResponse,
        },
        401: {"description": "Authentication required", "model": ErrorResponse},
        403: {"description": "Admin role required", "model": ErrorResponse},
        404: {"description": "Payout or booking not found", "model": ErrorResponse},
        429: {"description": "Rate limit exceeded", "model": RateLimitResponse},
        500: {"description": "Stripe transfer failed", "model": ErrorResponse},
    },
)
async def create_payout(
    body: PayoutRequest = Depends(ValidatedBody(PayoutRequest)),
    rate_limit: RateLimitResult = Depends(RateLimit("payout")),
    admin: User = Depends(require_admin),
    payouts: PayoutService = Depends(get_payout_service),
) -> PayoutResponse:
    """Process a payout (admin only)."""
    result = await payouts.process_payout(body.payout_id)
    return PayoutResponse(**result)
