"""API models for payout endpoints."""

from pydantic import BaseModel, ConfigDict, Field


class PayoutRequest(BaseModel):
    """Request to transfer a pending payout to its host (admin only)."""

    model_config = ConfigDict(
        strict=True,
        json_schema_extra={"examples": [{"payout_id": "PAY-2025-0001"}]},
    )

    payout_id: str = Field(..., min_length=1, description="Payout to process")


class PayoutResponse(BaseModel):
    """Result of a successful payout transfer."""

    success: bool = True
    transfer_id: str = Field(..., description="Stripe transfer ID", examples=["tr_1ABC123"])
    amount: float = Field(..., description="Transferred amount in currency units")
    payout_id: str
