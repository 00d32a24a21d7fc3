"""Webhook endpoints for external service integrations.

Provides endpoints for:
- Stripe webhook events (payments, refunds, transfers, connected accounts,
  identity verification, subscriptions)

These endpoints do NOT require JWT authentication as they receive
signed payloads from external services.
"""

import asyncio

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.status import HTTP_500_INTERNAL_SERVER_ERROR

from api.dependencies import get_stripe, get_webhook_handler
from api.models.common import ErrorResponse
from api.models.webhooks import WebhookErrorResponse, WebhookResponse
from marketplace.config import MAX_REQUEST_SIZE
from marketplace.models.errors import ErrorCode, ValidationError
from marketplace.services.stripe_service import StripeService
from marketplace.services.webhook_handler import WebhookHandler
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])


# === Webhook Endpoint ===


@router.post(
    "/webhooks/stripe",
    summary="Receive Stripe webhook events",
    description="""
Endpoint for Stripe webhook events. Handles:
- payment_intent.succeeded / payment_intent.payment_failed / checkout.session.completed
- charge.refunded
- account.updated, transfer.created / transfer.paid / transfer.failed
- identity.verification_session.verified / requires_input / canceled
- customer.subscription.created / updated / deleted / trial_will_end

**No authentication required** - signature is verified using Stripe webhook secret.

**Idempotent**: Duplicate events (same event_id) return 200 with 'duplicate' result.
Events the handler could not process return 500 so that Stripe redelivers them.
""",
    response_model=WebhookResponse,
    responses={
        200: {
            "description": "Event received and processed (or acknowledged)",
            "model": WebhookResponse,
        },
        400: {
            "description": "Invalid signature, missing header or oversized body",
            "model": ErrorResponse,
        },
        500: {
            "description": "Handler failed or webhook secret not configured",
            "model": WebhookErrorResponse,
        },
    },
)
async def handle_stripe_webhook(
    request: Request,
    stripe_service: StripeService = Depends(get_stripe),
    handler: WebhookHandler = Depends(get_webhook_handler),
) -> WebhookResponse | JSONResponse:
    """Handle incoming Stripe webhook events.

    Verifies signature, claims the event in the ledger and dispatches it.
    """
    # Raw body is needed byte-for-byte for signature verification
    payload = await request.body()
    if len(payload) > MAX_REQUEST_SIZE["default"]:
        raise ValidationError(
            ErrorCode.INVALID_REQUEST, message="Webhook payload too large"
        )

    signature = request.headers.get("Stripe-Signature")
    event = await asyncio.to_thread(stripe_service.verify_webhook_signature, payload, signature)
    payload_hash = StripeService.compute_payload_hash(payload)

    try:
        result, message = await handler.handle_event(event, payload_hash)
    except ValidationError:
        raise
    except Exception as e:
        logger.exception("Webhook handler failed for event %s", event.get("id"))
        return JSONResponse(
            status_code=HTTP_500_INTERNAL_SERVER_ERROR,
            content=WebhookErrorResponse(
                error="Webhook handler failed", details=str(e) or type(e).__name__
            ).model_dump(),
        )

    return WebhookResponse(
        received=True,
        event_id=event.get("id"),
        event_type=event.get("type"),
        processing_result=result,
        message=message,
    )
