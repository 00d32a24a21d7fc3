"""API models for identity verification endpoints."""

from pydantic import BaseModel, Field


class VerificationSessionResponse(BaseModel):
    """A Stripe Identity session the client can open."""

    success: bool = True
    session_id: str = Field(..., examples=["vs_1ABC123"])
    client_secret: str | None = Field(
        default=None, description="Secret for the Stripe.js identity modal"
    )
    url: str | None = Field(default=None, description="Hosted verification page")
