"""Webhook handler for processing verified Stripe events.

Provides business logic for handling webhook events separate from
HTTP routing concerns. This enables:
- Unit testing without HTTP overhead
- Reuse across different transport mechanisms

Every event passes through a durable ledger (table ``webhook-events``)
before dispatch. The ledger entry is claimed with a conditional insert, so
a redelivered event that already completed is answered ``duplicate``
without touching any entity. An event whose handler failed, or whose claim
lease expired, may be claimed again by the next delivery.
"""

import datetime as dt
from collections.abc import Awaitable, Callable
from typing import Any

from marketplace.config import WEBHOOK_PROCESSING_LEASE_SECONDS
from marketplace.models.errors import ErrorCode, ValidationError
from marketplace.models.webhook import (
    EventFamily,
    HandlerResult,
    ProcessingResult,
    WebhookEvent,
    WebhookEventRecord,
)
from marketplace.services.entity_store import EntityStore
from marketplace.services.identity_service import IdentityService
from marketplace.services.payment_service import PaymentService
from marketplace.services.payout_service import PayoutService
from marketplace.services.refund_service import RefundService
from marketplace.services.subscription_service import SubscriptionService
from marketplace.utils.logging import get_logger, log_webhook_event

logger = get_logger(__name__)

EventHandler = Callable[[WebhookEvent], Awaitable[HandlerResult]]

# Ledger states that must not be dispatched again
_SETTLED = (ProcessingResult.SUCCESS, ProcessingResult.SKIPPED)


class WebhookHandler:
    """Handler for processing Stripe webhook events.

    Claims each event in the ledger, routes it to exactly one service
    method and records the outcome.
    """

    def __init__(
        self,
        store: EntityStore,
        payments: PaymentService,
        refunds: RefundService,
        payouts: PayoutService,
        subscriptions: SubscriptionService,
        identity: IdentityService,
    ) -> None:
        self._store = store
        self._handlers: dict[str, EventHandler] = {
            "payment_intent.succeeded": payments.handle_payment_succeeded,
            "payment_intent.payment_failed": payments.handle_payment_failed,
            "checkout.session.completed": payments.handle_checkout_completed,
            "charge.refunded": refunds.handle_charge_refunded,
            "account.updated": payouts.handle_account_updated,
            "transfer.created": payouts.handle_transfer_event,
            "transfer.paid": payouts.handle_transfer_event,
            "transfer.failed": payouts.handle_transfer_event,
            "identity.verification_session.verified": identity.handle_verified,
            "identity.verification_session.requires_input": identity.handle_failed,
            "identity.verification_session.canceled": identity.handle_failed,
            "customer.subscription.created": subscriptions.handle_subscription_event,
            "customer.subscription.updated": subscriptions.handle_subscription_event,
            "customer.subscription.deleted": subscriptions.handle_subscription_event,
            "customer.subscription.trial_will_end": subscriptions.handle_subscription_event,
        }

    @property
    def handled_event_types(self) -> set[str]:
        return set(self._handlers)

    async def _claim(self, event: WebhookEvent, payload_hash: str) -> bool:
        """Claim an event for processing.

        Returns:
            True if this delivery owns the event, False if it is a duplicate
        """
        now = dt.datetime.now(dt.UTC)
        record = WebhookEventRecord(
            event_id=event.id,
            event_type=event.type,
            payload_hash=payload_hash,
            processing_result=ProcessingResult.PROCESSING,
            claimed_at=now,
        )
        if await self._store.create(record):
            return True

        existing = await self._store.get(WebhookEventRecord, event.id)
        if existing is None or existing.processing_result in _SETTLED:
            return False

        if existing.processing_result == ProcessingResult.PROCESSING:
            claimed_at = existing.claimed_at
            if claimed_at.tzinfo is None:
                claimed_at = claimed_at.replace(tzinfo=dt.UTC)
            if now - claimed_at < dt.timedelta(seconds=WEBHOOK_PROCESSING_LEASE_SECONDS):
                return False

        reclaimed = await self._store.update(
            WebhookEventRecord,
            event.id,
            {
                "processing_result": ProcessingResult.PROCESSING,
                "claimed_at": now,
                "payload_hash": payload_hash,
                "error_message": None,
            },
            expected={
                "processing_result": existing.processing_result,
                "claimed_at": existing.claimed_at,
            },
        )
        if reclaimed is not None:
            logger.info(
                "Re-claimed webhook event %s (was %s)",
                event.id,
                existing.processing_result.value,
            )
        return reclaimed is not None

    async def _record(
        self, event: WebhookEvent, result: ProcessingResult, message: str | None
    ) -> None:
        await self._store.update(
            WebhookEventRecord,
            event.id,
            {
                "processing_result": result,
                "processed_at": dt.datetime.now(dt.UTC),
                "error_message": message,
            },
        )

    async def handle_event(self, payload: dict[str, Any], payload_hash: str) -> HandlerResult:
        """Process one verified Stripe event.

        Args:
            payload: Verified and decoded webhook body
            payload_hash: SHA-256 of the raw body, kept for auditing

        Returns:
            Tuple of (processing_result, message)

        Raises:
            ValidationError: The payload carries no event id
            Exception: Whatever the service handler raised, after the ledger
                entry was marked ``error``
        """
        event = WebhookEvent.from_payload(payload)
        if not event.id:
            raise ValidationError(
                ErrorCode.INVALID_REQUEST, details={"message": "Missing event id"}
            )

        log_webhook_event(logger, event.type, event.id, result="received")

        if not await self._claim(event, payload_hash):
            log_webhook_event(logger, event.type, event.id, result="duplicate")
            return ProcessingResult.DUPLICATE, "Event already processed"

        handler = self._handlers.get(event.type)
        if handler is None or event.family == EventFamily.UNKNOWN:
            message = f"Event type '{event.type}' not handled"
            await self._record(event, ProcessingResult.SKIPPED, message)
            log_webhook_event(logger, event.type, event.id, result="skipped")
            return ProcessingResult.SKIPPED, message

        try:
            result, message = await handler(event)
        except Exception as e:
            await self._record(event, ProcessingResult.ERROR, str(e) or type(e).__name__)
            log_webhook_event(
                logger, event.type, event.id, result="error", error=str(e) or type(e).__name__
            )
            raise

        await self._record(event, result, message)
        log_webhook_event(
            logger,
            event.type,
            event.id,
            result=result.value,
            family=event.family.value,
            **({"detail": message} if message else {}),
        )
        return result, message
