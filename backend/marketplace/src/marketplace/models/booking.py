"""Booking and listing models."""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar

from pydantic import BaseModel, Field

from .enums import BookingPaymentStatus, BookingStatus


class Booking(BaseModel):
    """A guest's booking of a listing."""

    TABLE: ClassVar[str] = "bookings"
    KEY: ClassVar[str] = "id"

    id: str = Field(..., description="Booking ID")
    listing_id: str = Field(..., description="Reference to Listing")
    guest_email: str = Field(..., description="Email of the guest who booked")
    payment_reference: str | None = Field(
        default=None, description="Stripe PaymentIntent ID for the booking charge"
    )
    payment_status: BookingPaymentStatus = Field(default=BookingPaymentStatus.PENDING)
    status: BookingStatus = Field(default=BookingStatus.PENDING)
    refund_amount: Decimal | None = Field(default=None, ge=0)
    refund_date: datetime | None = None


class Listing(BaseModel):
    """A listing, read only. Used to resolve the owner of a booking."""

    TABLE: ClassVar[str] = "listings"
    KEY: ClassVar[str] = "id"

    id: str
    created_by: str = Field(..., description="Email of the listing owner")
    title: str | None = None
