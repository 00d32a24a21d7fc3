"""Host payout and payout method models."""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar

from pydantic import BaseModel, Field

from .enums import PayoutMethodStatus, PayoutMethodType, PayoutStatus


class Payout(BaseModel):
    """Money owed to a host for a booking or a sale.

    A ``completed`` payout is never transferred again. ``attempt`` counts
    transfers that definitively failed and is part of the transfer
    idempotency key, so a retry never replays a failed transfer.
    """

    TABLE: ClassVar[str] = "payouts"
    KEY: ClassVar[str] = "id"

    id: str
    host_identity: str = Field(..., description="Email of the host")
    booking_id: str | None = None
    transaction_id: str | None = Field(
        default=None, description="Charge the payout was earned from"
    )
    amount: Decimal | None = Field(default=None, ge=0, description="Gross sale amount")
    platform_fee: Decimal | None = Field(default=None, ge=0)
    shipping_cost: Decimal | None = Field(
        default=None, ge=0, description="Seller-paid shipping deducted from the sale"
    )
    net_amount: Decimal = Field(..., ge=0, description="Amount owed, currency units")
    status: PayoutStatus = Field(default=PayoutStatus.PENDING)
    transaction_ref: str | None = Field(
        default=None, description="Stripe Transfer ID (tr_xxx)"
    )
    payout_date: datetime | None = None
    error_message: str | None = None
    attempt: int = Field(default=0, ge=0, description="Failed transfer attempts")


class PayoutMethod(BaseModel):
    """A host's payout destination (Stripe connected account or bank)."""

    TABLE: ClassVar[str] = "payout-methods"
    KEY: ClassVar[str] = "id"

    id: str
    host_identity: str
    method_type: PayoutMethodType = Field(default=PayoutMethodType.STRIPE)
    external_account_id: str = Field(
        ..., description="Stripe connected account ID (acct_xxx)"
    )
    status: PayoutMethodStatus = Field(default=PayoutMethodStatus.PENDING_VERIFICATION)
    is_default: bool = False
    verified_date: datetime | None = None

    @property
    def can_receive_transfers(self) -> bool:
        return (
            self.method_type == PayoutMethodType.STRIPE
            and self.status == PayoutMethodStatus.VERIFIED
        )


def sale_payout_id(transaction_id: str) -> str:
    """Deterministic ID for the payout of a sale charge."""
    return f"PAYOUT-{transaction_id}"
