"""API models for webhook endpoints."""

from typing import Any

from pydantic import BaseModel

from marketplace.models.webhook import ProcessingResult


class WebhookResponse(BaseModel):
    """Acknowledgment returned to Stripe."""

    received: bool
    event_id: str | None = None
    event_type: str | None = None
    processing_result: ProcessingResult
    message: str | None = None


class WebhookErrorResponse(BaseModel):
    """Error response for webhook failures (Stripe redelivers on 5xx)."""

    error: str
    details: Any = None
