"""Payment reconciliation for charge success and failure events.

Handles:
- payment_intent.succeeded: complete the charge transaction, confirm the booking
- checkout.session.completed (paid): same as above, from the checkout session
- payment_intent.payment_failed: fail a pending charge

A paid sale (metadata.type "sale_purchase") also opens a pending payout
for the seller, net of the platform fee and seller-paid shipping.

All writes are conditional on the current status so that redelivered or
concurrent events converge on the same state.
"""

import datetime as dt
from decimal import Decimal
from typing import Any

from marketplace.config import DEFAULT_CURRENCY, PLATFORM_FEE_RATE
from marketplace.models.enums import (
    BookingPaymentStatus,
    BookingStatus,
    NotificationType,
    PayoutStatus,
    TransactionStatus,
    TransactionType,
)
from marketplace.models.booking import Booking, Listing
from marketplace.models.payout import Payout, sale_payout_id
from marketplace.models.transaction import Transaction, charge_transaction_id
from marketplace.models.webhook import HandlerResult, ProcessingResult, WebhookEvent
from marketplace.services.entity_store import EntityStore
from marketplace.services.notification_service import NotificationService
from marketplace.utils.logging import get_logger, log_payment_operation
from marketplace.utils.money import from_cents, quantize_cents, to_cents

logger = get_logger(__name__)

# Booking payment states from which a successful charge may confirm it
UNPAID_BOOKING_STATES = (BookingPaymentStatus.PENDING, BookingPaymentStatus.FAILED, None)

# metadata.type of a checkout that sells a listing outright
SALE_PURCHASE = "sale_purchase"


async def find_charge(
    store: EntityStore, payment_reference: str | None, metadata: dict[str, Any]
) -> Transaction | None:
    """Locate a charge by payment reference, falling back to metadata.transaction_id.

    Refund rows share the charge's payment reference and are never returned.
    """
    if payment_reference:
        for txn in await store.filter(Transaction, "payment_reference", payment_reference):
            if txn.transaction_type == TransactionType.CHARGE:
                return txn
    transaction_id = metadata.get("transaction_id")
    if transaction_id:
        txn = await store.get(Transaction, transaction_id)
        if txn and txn.transaction_type == TransactionType.CHARGE:
            return txn
    return None


class PaymentService:
    """Applies payment outcome events to transactions and bookings."""

    def __init__(self, store: EntityStore, notifications: NotificationService) -> None:
        self._store = store
        self._notifications = notifications

    async def handle_payment_succeeded(self, event: WebhookEvent) -> HandlerResult:
        """Process payment_intent.succeeded."""
        intent = event.object
        charges = (intent.get("charges") or {}).get("data") or []
        receipt_url = charges[0].get("receipt_url") if charges else None
        return await self._complete_payment(
            payment_reference=intent.get("id"),
            amount_cents=intent.get("amount_received") or intent.get("amount") or 0,
            currency=intent.get("currency"),
            payer_email=intent.get("receipt_email"),
            metadata=event.metadata,
            receipt_url=receipt_url,
        )

    async def handle_checkout_completed(self, event: WebhookEvent) -> HandlerResult:
        """Process checkout.session.completed.

        Only sessions with payment_status 'paid' complete a payment; others
        (e.g. delayed payment methods) are acknowledged and skipped.
        """
        session = event.object
        payment_status = session.get("payment_status")
        if payment_status != "paid":
            logger.warning(
                "checkout.session.completed with payment_status=%s (not 'paid'), skipping",
                payment_status,
            )
            return ProcessingResult.SKIPPED, f"Payment status is '{payment_status}', not 'paid'"

        payment_reference = session.get("payment_intent")
        if not payment_reference:
            return ProcessingResult.SKIPPED, "Checkout session has no payment intent"

        customer_details = session.get("customer_details") or {}
        return await self._complete_payment(
            payment_reference=payment_reference,
            amount_cents=session.get("amount_total") or 0,
            currency=session.get("currency"),
            payer_email=customer_details.get("email") or session.get("customer_email"),
            metadata=event.metadata,
        )

    async def _complete_payment(
        self,
        *,
        payment_reference: str | None,
        amount_cents: int,
        currency: str | None,
        payer_email: str | None,
        metadata: dict[str, Any],
        receipt_url: str | None = None,
    ) -> HandlerResult:
        now = dt.datetime.now(dt.UTC)
        txn = await find_charge(self._store, payment_reference, metadata)
        newly_completed = False

        if txn is None:
            if not payment_reference:
                return ProcessingResult.SKIPPED, "No payment reference in event"
            user_email = metadata.get("user_email") or payer_email
            if not user_email:
                logger.warning("No transaction and no payer for payment %s", payment_reference)
                return ProcessingResult.SKIPPED, "Transaction not found"

            candidate = Transaction(
                id=charge_transaction_id(payment_reference),
                user_email=user_email,
                transaction_type=TransactionType.CHARGE,
                amount=from_cents(amount_cents),
                currency=currency or DEFAULT_CURRENCY,
                status=TransactionStatus.COMPLETED,
                payment_reference=payment_reference,
                reference_id=metadata.get("booking_id"),
                receipt_url=receipt_url,
                created_at=now,
                updated_at=now,
            )
            newly_completed = await self._store.create(candidate)
            txn = candidate if newly_completed else await self._store.get(Transaction, candidate.id)
            if txn is None:
                return ProcessingResult.SKIPPED, "Transaction not found"

        elif txn.status == TransactionStatus.PENDING:
            updated = await self._store.update(
                Transaction,
                txn.id,
                {
                    "status": TransactionStatus.COMPLETED,
                    "payment_reference": payment_reference or txn.payment_reference,
                    "receipt_url": receipt_url or txn.receipt_url,
                    "updated_at": now,
                },
                expected={"status": TransactionStatus.PENDING},
            )
            if updated is not None:
                txn, newly_completed = updated, True

        booking_confirmed = False
        booking_id = txn.reference_id or metadata.get("booking_id")
        if booking_id:
            changes: dict[str, Any] = {
                "payment_status": BookingPaymentStatus.PAID,
                "status": BookingStatus.CONFIRMED,
            }
            if txn.payment_reference:
                changes["payment_reference"] = txn.payment_reference
            booking = await self._store.update(
                Booking,
                booking_id,
                changes,
                expected={"payment_status": UNPAID_BOOKING_STATES},
            )
            booking_confirmed = booking is not None

        payout_created = False
        is_sale = metadata.get("type") == SALE_PURCHASE and metadata.get("listing_id")
        if is_sale and txn.status == TransactionStatus.COMPLETED:
            payout_created = await self._record_sale_payout(txn, metadata)

        if not (newly_completed or booking_confirmed or payout_created):
            return ProcessingResult.SKIPPED, "Payment already recorded"

        if booking_confirmed:
            self._notifications.notify(
                txn.user_email,
                NotificationType.BOOKING_CONFIRMED,
                "Booking Confirmed",
                "Your payment was successful and booking is confirmed!",
                reference_id=booking_id,
            )
        else:
            self._notifications.notify(
                txn.user_email,
                NotificationType.PAYMENT,
                "Payment Successful",
                f"Your payment of ${txn.amount:.2f} was received.",
                reference_id=txn.id,
            )

        log_payment_operation(
            logger,
            "payment_succeeded",
            transaction_id=txn.id,
            booking_id=booking_id,
            amount_cents=amount_cents,
            status=txn.status.value,
        )
        return ProcessingResult.SUCCESS, None

    async def _record_sale_payout(self, txn: Transaction, metadata: dict[str, Any]) -> bool:
        """Create the seller's pending payout for a paid sale.

        The payout ID is derived from the charge, so redelivered events find
        it taken and neither a second payout nor a second notice is created.

        Returns:
            True if the payout was created by this call
        """
        listing_id = metadata["listing_id"]
        listing = await self._store.get(Listing, listing_id)
        if listing is None:
            logger.warning("Sale %s refers to unknown listing %s", txn.id, listing_id)
            return False

        shipping_cost = quantize_cents(metadata.get("seller_shipping_cost") or 0)
        platform_fee = quantize_cents(txn.amount * PLATFORM_FEE_RATE)
        net_amount = max(txn.amount - platform_fee - shipping_cost, Decimal("0"))
        payout = Payout(
            id=sale_payout_id(txn.id),
            host_identity=listing.created_by,
            transaction_id=txn.id,
            amount=txn.amount,
            platform_fee=platform_fee,
            shipping_cost=shipping_cost,
            net_amount=net_amount,
            status=PayoutStatus.PENDING,
        )
        if not await self._store.create(payout):
            return False

        breakdown = f"Sale: ${txn.amount:.2f} - Fee: ${platform_fee:.2f}"
        if shipping_cost > 0:
            breakdown += f" - Shipping: ${shipping_cost:.2f}"
        self._notifications.notify(
            listing.created_by,
            NotificationType.SALE_PURCHASE,
            "New Purchase",
            f'Your listing "{listing.title or listing.id}" has been purchased! '
            f"You'll receive ${net_amount:.2f} ({breakdown})",
            reference_id=listing.id,
        )
        log_payment_operation(
            logger,
            "sale_payout_created",
            transaction_id=txn.id,
            payout_id=payout.id,
            amount_cents=to_cents(net_amount),
            status=PayoutStatus.PENDING.value,
        )
        return True

    async def handle_payment_failed(self, event: WebhookEvent) -> HandlerResult:
        """Process payment_intent.payment_failed.

        Only a pending charge is failed; completed or refunded charges are
        never touched.
        """
        intent = event.object
        payment_reference = intent.get("id")
        last_error = intent.get("last_payment_error") or {}
        error_message = last_error.get("message") or "Payment declined"

        txn = await find_charge(self._store, payment_reference, event.metadata)
        if txn is None:
            logger.warning("No transaction found for failed payment %s", payment_reference)
            return ProcessingResult.SKIPPED, "Transaction not found"

        updated = await self._store.update(
            Transaction,
            txn.id,
            {
                "status": TransactionStatus.FAILED,
                "error_message": error_message,
                "updated_at": dt.datetime.now(dt.UTC),
            },
            expected={"status": TransactionStatus.PENDING},
        )
        if updated is None:
            return ProcessingResult.SKIPPED, f"Transaction is {txn.status.value}, not pending"

        if txn.reference_id:
            await self._store.update(
                Booking,
                txn.reference_id,
                {"payment_status": BookingPaymentStatus.FAILED},
                expected={"payment_status": BookingPaymentStatus.PENDING},
            )

        self._notifications.notify(
            txn.user_email,
            NotificationType.PAYMENT,
            "Payment Failed",
            f"Your payment failed: {error_message}. Please try again or contact support.",
            reference_id=txn.reference_id,
        )
        log_payment_operation(
            logger,
            "payment_failed",
            transaction_id=txn.id,
            booking_id=txn.reference_id,
            status=TransactionStatus.FAILED.value,
            error=error_message,
        )
        return ProcessingResult.SUCCESS, None
