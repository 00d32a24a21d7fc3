"""Stripe webhook event models for dispatch, idempotency and auditing."""

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, Field


class EventFamily(str, Enum):
    """Closed set of event families the dispatcher routes on."""

    PAYMENT = "payment"
    CHECKOUT = "checkout"
    REFUND = "refund"
    ACCOUNT = "account"
    TRANSFER = "transfer"
    IDENTITY = "identity"
    SUBSCRIPTION = "subscription"
    UNKNOWN = "unknown"


# Event types we handle, by family
EVENT_TYPE_FAMILIES: dict[str, EventFamily] = {
    "payment_intent.succeeded": EventFamily.PAYMENT,
    "payment_intent.payment_failed": EventFamily.PAYMENT,
    "checkout.session.completed": EventFamily.CHECKOUT,
    "charge.refunded": EventFamily.REFUND,
    "account.updated": EventFamily.ACCOUNT,
    "transfer.created": EventFamily.TRANSFER,
    "transfer.paid": EventFamily.TRANSFER,
    "transfer.failed": EventFamily.TRANSFER,
    "identity.verification_session.verified": EventFamily.IDENTITY,
    "identity.verification_session.requires_input": EventFamily.IDENTITY,
    "identity.verification_session.canceled": EventFamily.IDENTITY,
    "customer.subscription.created": EventFamily.SUBSCRIPTION,
    "customer.subscription.updated": EventFamily.SUBSCRIPTION,
    "customer.subscription.deleted": EventFamily.SUBSCRIPTION,
    "customer.subscription.trial_will_end": EventFamily.SUBSCRIPTION,
}


class ProcessingResult(str, Enum):
    """Outcome of handling a webhook event."""

    PROCESSING = "processing"
    SUCCESS = "success"
    SKIPPED = "skipped"
    DUPLICATE = "duplicate"
    ERROR = "error"


class WebhookEvent(BaseModel):
    """A verified Stripe event, reduced to what the dispatcher needs."""

    id: str = Field(..., examples=["evt_1ABC123DEF456"])
    type: str = Field(..., examples=["charge.refunded"])
    created: int = Field(default=0, description="Unix timestamp of the event")
    object: dict[str, Any] = Field(
        default_factory=dict, description="The event's data.object"
    )

    @property
    def family(self) -> EventFamily:
        return EVENT_TYPE_FAMILIES.get(self.type, EventFamily.UNKNOWN)

    @property
    def metadata(self) -> dict[str, Any]:
        return self.object.get("metadata") or {}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "WebhookEvent":
        """Build an event from a parsed Stripe payload.

        Args:
            payload: Decoded webhook JSON body

        Returns:
            WebhookEvent with ``object`` taken from ``data.object``
        """
        data = payload.get("data") or {}
        return cls(
            id=payload.get("id", ""),
            type=payload.get("type", ""),
            created=payload.get("created") or 0,
            object=data.get("object") or {},
        )


class WebhookEventRecord(BaseModel):
    """Ledger entry of a received Stripe webhook event.

    Used for:
    - Idempotency: an event is dispatched at most once to completion
    - Auditing: track all webhook deliveries
    - Debugging: investigate payment issues
    """

    TABLE: ClassVar[str] = "webhook-events"
    KEY: ClassVar[str] = "event_id"

    event_id: str = Field(..., examples=["evt_1ABC123DEF456"])
    event_type: str
    payload_hash: str = Field(..., description="SHA-256 hash of the raw payload")
    processing_result: ProcessingResult = Field(default=ProcessingResult.PROCESSING)
    claimed_at: datetime = Field(..., description="When processing last started")
    processed_at: datetime | None = None
    error_message: str | None = None


# (result, message) returned by every event handler
HandlerResult = tuple[ProcessingResult, str | None]
