"""Refund endpoints.

Provides REST endpoints for:
- POST /refunds - Refund all or part of a completed charge (JWT required)

Admins may refund any transaction; other callers only transactions for
bookings of listings they own.
"""

from fastapi import APIRouter, Depends

from api.dependencies import get_refund_service
from api.models.common import ErrorResponse, RateLimitResponse
from api.models.refunds import RefundRequest, RefundResponse
from api.rate_limit import RateLimit
from api.security import get_current_user
from api.validation import ValidatedBody
from marketplace.models.user import User
from marketplace.services.rate_limiter import RateLimitResult
from marketplace.services.refund_service import RefundService

router = APIRouter(tags=["refunds"])


@router.post(
    "/refunds",
    summary="Refund a charge",
    description="""
Refund all or part of a completed charge through Stripe.

**Requires JWT authentication.**
**Only admins or the owner of the booked listing can refund.**

**Notes:**
- Omitting refund_amount refunds the remaining refundable balance
- Partial refunds may be repeated until the charge amount is exhausted
- Any refund cancels the linked booking
""",
    response_model=RefundResponse,
    responses={
        400: {
            "description": "Invalid request or transaction not refundable",
            "model": ErrorResponse,
        },
        401: {"description": "Authentication required", "model": ErrorResponse},
        403: {"description": "Not authorized to refund this transaction", "model": ErrorResponse},
        404: {"description": "Transaction not found", "model": ErrorResponse},
        413: {"description": "Request too large", "model": ErrorResponse},
        415: {"description": "Body is not JSON", "model": ErrorResponse},
        429: {"description": "Rate limit exceeded", "model": RateLimitResponse},
        500: {"description": "Stripe refund failed", "model": ErrorResponse},
    },
)
async def create_refund(
    body: RefundRequest = Depends(ValidatedBody(RefundRequest)),
    rate_limit: RateLimitResult = Depends(RateLimit("refund")),
    user: User = Depends(get_current_user),
    refunds: RefundService = Depends(get_refund_service),
) -> RefundResponse:
    """Refund a charge on behalf of the caller."""
    result = await refunds.request_refund(
        user,
        body.transaction_id,
        refund_amount=body.refund_amount,
        refund_reason=body.refund_reason,
        booking_id=body.booking_id,
    )
    return RefundResponse(**result)
