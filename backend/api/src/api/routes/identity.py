"""Identity verification endpoints.

Provides REST endpoints for:
- POST /identity/verification-sessions - Start Stripe Identity verification (JWT required)

The outcome arrives asynchronously through the Stripe webhook.
"""

from fastapi import APIRouter, Depends

from api.dependencies import get_identity_service
from api.models.common import ErrorResponse, RateLimitResponse
from api.models.identity import VerificationSessionResponse
from api.rate_limit import RateLimit
from api.security import get_current_user
from api.validation import check_request_size
from marketplace.models.user import User
from marketplace.services.identity_service import IdentityService
from marketplace.services.rate_limiter import RateLimitResult

router = APIRouter(prefix="/identity", tags=["identity"])


@router.post(
    "/verification-sessions",
    summary="Start identity verification",
    description="""
Create a Stripe Identity document verification session (document plus
live selfie) and mark the caller's verification pending. A pending session
started within the last 24 hours that still awaits input is returned
instead of creating a new one.

**Requires JWT authentication.**
""",
    response_model=VerificationSessionResponse,
    responses={
        400: {"description": "Already verified", "model": ErrorResponse},
        401: {"description": "Authentication required", "model": ErrorResponse},
        429: {"description": "Rate limit exceeded", "model": RateLimitResponse},
        500: {"description": "Stripe session creation failed", "model": ErrorResponse},
    },
)
async def create_verification_session(
    _: None = Depends(check_request_size),
    rate_limit: RateLimitResult = Depends(RateLimit("identity")),
    user: User = Depends(get_current_user),
    identity: IdentityService = Depends(get_identity_service),
) -> VerificationSessionResponse:
    result = await identity.create_verification_session(user)
    return VerificationSessionResponse(**result)
