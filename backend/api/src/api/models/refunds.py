"""API models for refund endpoints."""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class RefundRequest(BaseModel):
    """Request to refund all or part of a completed charge.

    Omitting refund_amount refunds the remaining refundable balance.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {"transaction_id": "TXN-pi_3ABC123", "refund_amount": 50.0},
                {
                    "transaction_id": "TXN-pi_3ABC123",
                    "refund_reason": "requested_by_customer",
                    "booking_id": "BKG-2025-0001",
                },
            ]
        },
    )

    transaction_id: str = Field(
        ..., min_length=1, description="Charge transaction to refund", examples=["TXN-pi_3ABC123"]
    )
    refund_amount: Decimal | None = Field(
        default=None,
        gt=0,
        decimal_places=2,
        description="Amount in currency units (defaults to the remaining balance)",
        examples=[50.0],
    )
    refund_reason: str | None = Field(
        default=None, max_length=500, examples=["requested_by_customer"]
    )
    booking_id: str | None = Field(
        default=None, description="Booking the caller is acting on", examples=["BKG-2025-0001"]
    )


class RefundResponse(BaseModel):
    """Result of a successful refund."""

    success: bool = True
    refund_id: str = Field(..., description="Stripe refund ID", examples=["re_3ABC123"])
    amount: float = Field(..., description="Refunded amount in currency units", examples=[50.0])
    transaction_id: str = Field(
        ..., description="ID of the refund transaction record", examples=["REF-re_3ABC123"]
    )
