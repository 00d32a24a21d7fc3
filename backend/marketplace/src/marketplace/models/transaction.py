"""Transaction model for charge and refund records."""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar

from pydantic import BaseModel, Field

from .enums import TransactionStatus, TransactionType


class Transaction(BaseModel):
    """A money movement mirrored from Stripe.

    Amounts are decimal currency units. A partially refunded charge stays
    ``completed`` and carries the cumulative ``refund_amount``; a fully
    refunded charge moves to ``refunded``.
    """

    TABLE: ClassVar[str] = "transactions"
    KEY: ClassVar[str] = "id"

    id: str = Field(..., description="Transaction ID", examples=["TXN-pi_3ABC123"])
    user_email: str = Field(..., description="Email of the payer")
    transaction_type: TransactionType = Field(default=TransactionType.CHARGE)
    amount: Decimal = Field(..., ge=0, description="Amount in currency units")
    currency: str = Field(default="usd", description="ISO currency code")
    status: TransactionStatus = Field(default=TransactionStatus.PENDING)
    payment_reference: str | None = Field(
        default=None,
        description="Stripe PaymentIntent ID (pi_xxx)",
        examples=["pi_3ABC123DEF456"],
    )
    reference_id: str | None = Field(
        default=None, description="Linked booking ID, if any"
    )
    refund_amount: Decimal | None = Field(
        default=None, ge=0, description="Cumulative refunded amount"
    )
    refund_reason: str | None = None
    original_transaction_id: str | None = Field(
        default=None, description="For refund rows, the charge being refunded"
    )
    external_refund_id: str | None = Field(
        default=None, description="Stripe Refund ID (re_xxx)"
    )
    error_message: str | None = None
    receipt_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def refunded_so_far(self) -> Decimal:
        """Cumulative refunded amount, zero when nothing was refunded."""
        return self.refund_amount or Decimal("0")

    @property
    def remaining_refundable(self) -> Decimal:
        """Amount that can still be refunded."""
        return self.amount - self.refunded_so_far


def charge_transaction_id(payment_reference: str) -> str:
    """Deterministic ID for a charge first noticed through a webhook."""
    return f"TXN-{payment_reference}"


def refund_transaction_id(external_refund_id: str) -> str:
    """Deterministic ID for the refund row of a Stripe refund."""
    return f"REF-{external_refund_id}"
