"""API models for subscription endpoints."""

from pydantic import BaseModel, Field


class CancelSubscriptionResponse(BaseModel):
    """Result of scheduling a subscription cancellation."""

    success: bool = True
    message: str = Field(
        default="Subscription will be canceled at the end of the current billing period"
    )
    cancel_at: str | None = Field(
        default=None,
        description="When the subscription ends (ISO-8601)",
        examples=["2025-08-01T00:00:00+00:00"],
    )
