"""Refund processing: user-initiated refunds and charge.refunded reconciliation.

Refund requests reserve the new cumulative ``refund_amount`` on the charge
with a conditional update before Stripe is called, so two concurrent
requests can never refund more than the charge amount. If Stripe rejects
the refund the reservation is rolled back.

Stripe's ``charge.refunded`` event carries the cumulative ``amount_refunded``
and is treated as authoritative: it only ever moves the recorded refund
amount forward. Each Stripe refund maps to exactly one refund transaction
row (``REF-<refund id>``), whichever path sees it first.
"""

import asyncio
import datetime as dt
from decimal import Decimal
from typing import Any

from marketplace.models.booking import Booking, Listing
from marketplace.models.enums import (
    BookingPaymentStatus,
    BookingStatus,
    NotificationType,
    TransactionStatus,
    TransactionType,
)
from marketplace.models.errors import (
    AuthError,
    ConflictError,
    ErrorCode,
    NotFoundError,
    ValidationError,
)
from marketplace.models.transaction import Transaction, refund_transaction_id
from marketplace.models.user import User
from marketplace.models.webhook import HandlerResult, ProcessingResult, WebhookEvent
from marketplace.services.entity_store import EntityStore
from marketplace.services.notification_service import NotificationService
from marketplace.services.payment_service import find_charge
from marketplace.services.stripe_service import StripeService
from marketplace.utils.logging import get_logger, log_payment_operation
from marketplace.utils.money import from_cents, is_whole_cents, to_cents

logger = get_logger(__name__)

DEFAULT_REFUND_REASON = "requested_by_customer"

# Booking payment states a refund may still cancel
REFUNDABLE_BOOKING_STATES = (
    BookingPaymentStatus.PENDING,
    BookingPaymentStatus.PAID,
    BookingPaymentStatus.FAILED,
    None,
)

_REFUND_STATUS = {
    "succeeded": TransactionStatus.COMPLETED,
    "pending": TransactionStatus.PENDING,
    "requires_action": TransactionStatus.PENDING,
    "failed": TransactionStatus.FAILED,
    "canceled": TransactionStatus.FAILED,
}


class RefundService:
    """Issues refunds and mirrors Stripe refund events."""

    def __init__(
        self,
        store: EntityStore,
        stripe_service: StripeService,
        notifications: NotificationService,
    ) -> None:
        self._store = store
        self._stripe = stripe_service
        self._notifications = notifications

    async def _authorize(
        self, caller: User, txn: Transaction, booking_id: str | None
    ) -> None:
        """Admins may refund anything; otherwise the caller must own the listing.

        Raises:
            AuthError: If the caller is neither admin nor the listing owner.
        """
        if caller.is_admin:
            return

        # The booking must be the one the charge paid for
        if txn.reference_id and booking_id in (None, txn.reference_id):
            booking = await self._store.get(Booking, txn.reference_id)
            if booking:
                listing = await self._store.get(Listing, booking.listing_id)
                if listing and listing.created_by.lower() == caller.email.lower():
                    return

        logger.warning("Refund of %s denied for %s", txn.id, caller.email)
        raise AuthError(ErrorCode.FORBIDDEN)

    async def request_refund(
        self,
        caller: User,
        transaction_id: str,
        refund_amount: Decimal | None = None,
        refund_reason: str | None = None,
        booking_id: str | None = None,
    ) -> dict[str, Any]:
        """Refund all or part of a completed charge.

        Args:
            caller: Authenticated user requesting the refund
            transaction_id: Charge transaction to refund
            refund_amount: Amount to refund; defaults to the remaining balance
            refund_reason: Reason recorded on the refund
            booking_id: Booking the caller is acting on, if any

        Returns:
            Dict with success, refund_id, amount and transaction_id (refund row)

        Raises:
            NotFoundError: Transaction does not exist
            AuthError: Caller may not refund this transaction
            ConflictError: Already refunded, not completed, or a concurrent refund won
            ValidationError: No payment reference or invalid amount
            StripeServiceError: Stripe rejected the refund
        """
        txn = await self._store.get(Transaction, transaction_id)
        if txn is None:
            raise NotFoundError(ErrorCode.TRANSACTION_NOT_FOUND)

        await self._authorize(caller, txn, booking_id)

        if txn.status == TransactionStatus.REFUNDED:
            raise ConflictError(ErrorCode.ALREADY_REFUNDED)
        if txn.status != TransactionStatus.COMPLETED:
            raise ConflictError(ErrorCode.TRANSACTION_NOT_REFUNDABLE)
        if not txn.payment_reference:
            raise ValidationError(ErrorCode.MISSING_PAYMENT_REFERENCE)

        amount = refund_amount if refund_amount is not None else txn.remaining_refundable
        if amount <= 0 or not is_whole_cents(amount):
            raise ValidationError(ErrorCode.INVALID_REFUND_AMOUNT)
        if amount > txn.remaining_refundable:
            raise ValidationError(
                ErrorCode.REFUND_EXCEEDS_BALANCE,
                details={
                    "requested": f"{amount:.2f}",
                    "remaining": f"{txn.remaining_refundable:.2f}",
                },
            )

        reason = refund_reason or DEFAULT_REFUND_REASON
        previous = txn.refund_amount
        cumulative = txn.refunded_so_far + amount
        now = dt.datetime.now(dt.UTC)

        reserved = await self._store.update(
            Transaction,
            txn.id,
            {"refund_amount": cumulative, "refund_reason": reason, "updated_at": now},
            expected={"status": TransactionStatus.COMPLETED, "refund_amount": previous},
        )
        if reserved is None:
            raise ConflictError(ErrorCode.REFUND_IN_PROGRESS)

        try:
            refund = await asyncio.to_thread(
                self._stripe.create_refund,
                payment_intent_id=txn.payment_reference,
                amount_cents=to_cents(amount),
                idempotency_key=f"refund-{txn.id}-{to_cents(cumulative)}",
                reason=reason,
                metadata={
                    "transaction_id": txn.id,
                    "refunded_by": caller.email,
                    "booking_id": txn.reference_id or "",
                },
            )
        except Exception:
            await self._store.update(
                Transaction,
                txn.id,
                {"refund_amount": previous, "refund_reason": txn.refund_reason},
                expected={"refund_amount": cumulative},
            )
            log_payment_operation(
                logger,
                "request_refund",
                transaction_id=txn.id,
                amount_cents=to_cents(amount),
                error="Stripe refund failed, reservation released",
            )
            raise

        refund_row = Transaction(
            id=refund_transaction_id(refund["refund_id"]),
            user_email=txn.user_email,
            transaction_type=TransactionType.REFUND,
            amount=amount,
            currency=txn.currency,
            status=_REFUND_STATUS.get(refund["status"], TransactionStatus.COMPLETED),
            payment_reference=txn.payment_reference,
            reference_id=txn.reference_id,
            refund_reason=reason,
            original_transaction_id=txn.id,
            external_refund_id=refund["refund_id"],
            created_at=now,
            updated_at=now,
        )
        await self._store.create(refund_row)

        if cumulative >= txn.amount:
            await self._store.update(
                Transaction,
                txn.id,
                {"status": TransactionStatus.REFUNDED, "updated_at": now},
                expected={"status": TransactionStatus.COMPLETED},
            )

        if txn.reference_id:
            await self._cancel_booking(txn.reference_id, cumulative, now)

        self._notifications.notify(
            txn.user_email,
            (
                NotificationType.BOOKING_CANCELLED
                if txn.reference_id
                else NotificationType.PAYMENT
            ),
            "Refund Processed",
            f"A refund of ${amount:.2f} has been processed to your original payment method.",
            reference_id=txn.reference_id,
        )
        log_payment_operation(
            logger,
            "request_refund",
            transaction_id=txn.id,
            booking_id=txn.reference_id,
            amount_cents=to_cents(amount),
            status="refunded" if cumulative >= txn.amount else "partially_refunded",
            refund_id=refund["refund_id"],
        )
        return {
            "success": True,
            "refund_id": refund["refund_id"],
            "amount": amount,
            "transaction_id": refund_row.id,
        }

    async def _cancel_booking(
        self, booking_id: str, refunded: Decimal, now: dt.datetime
    ) -> Booking | None:
        return await self._store.update(
            Booking,
            booking_id,
            {
                "status": BookingStatus.CANCELLED,
                "payment_status": BookingPaymentStatus.REFUNDED,
                "refund_amount": refunded,
                "refund_date": now,
            },
            expected={"payment_status": REFUNDABLE_BOOKING_STATES},
        )

    async def handle_charge_refunded(self, event: WebhookEvent) -> HandlerResult:
        """Process charge.refunded.

        The charge's cumulative ``amount_refunded`` is recorded on the original
        transaction only when larger than what is stored. A full refund moves
        the transaction to ``refunded`` and cancels the linked booking.
        """
        charge = event.object
        payment_reference = charge.get("payment_intent")
        txn = await find_charge(self._store, payment_reference, event.metadata)
        if txn is None:
            logger.warning("No transaction found for refunded charge %s", charge.get("id"))
            return ProcessingResult.SKIPPED, "Transaction not found"

        now = dt.datetime.now(dt.UTC)
        cumulative = from_cents(charge.get("amount_refunded") or 0)
        fully_refunded = bool(charge.get("refunded")) or cumulative >= txn.amount

        refunds = (charge.get("refunds") or {}).get("data") or []
        for refund in refunds:
            await self._record_refund_row(txn, refund, now)

        changes: dict[str, Any] = {"refund_amount": cumulative, "updated_at": now}
        if fully_refunded:
            changes["status"] = TransactionStatus.REFUNDED
        if refunds and refunds[0].get("reason"):
            changes["refund_reason"] = refunds[0]["reason"]

        updated = await self._store.update(
            Transaction,
            txn.id,
            changes,
            expected={"status": (TransactionStatus.PENDING, TransactionStatus.COMPLETED)},
            lower_than={"refund_amount": cumulative},
        )

        # A refund requested through the API reserved the amount already and
        # only the final status may still be missing
        if updated is None and fully_refunded:
            updated = await self._store.update(
                Transaction,
                txn.id,
                {"status": TransactionStatus.REFUNDED, "updated_at": now},
                expected={"status": TransactionStatus.COMPLETED, "refund_amount": cumulative},
            )
            if updated is not None and txn.reference_id:
                await self._cancel_booking(txn.reference_id, cumulative, now)
            return (
                (ProcessingResult.SUCCESS, None)
                if updated is not None
                else (ProcessingResult.SKIPPED, "Refund already recorded")
            )

        if updated is None:
            return ProcessingResult.SKIPPED, "Refund already recorded"

        if txn.reference_id:
            if fully_refunded:
                await self._cancel_booking(txn.reference_id, cumulative, now)
            else:
                await self._store.update(
                    Booking,
                    txn.reference_id,
                    {"refund_amount": cumulative},
                    lower_than={"refund_amount": cumulative},
                )

        refunded_now = cumulative - txn.refunded_so_far
        self._notifications.notify(
            txn.user_email,
            NotificationType.PAYMENT,
            "Refund Processed",
            f"A refund of ${refunded_now:.2f} has been processed to your original payment "
            "method. It may take 5-10 business days to appear.",
            reference_id=txn.reference_id,
        )
        log_payment_operation(
            logger,
            "charge_refunded",
            transaction_id=txn.id,
            booking_id=txn.reference_id,
            amount_cents=to_cents(cumulative),
            status=updated.status.value,
        )
        return ProcessingResult.SUCCESS, None

    async def _record_refund_row(
        self, txn: Transaction, refund: dict[str, Any], now: dt.datetime
    ) -> None:
        refund_id = refund.get("id")
        if not refund_id:
            return
        created = await self._store.create(
            Transaction(
                id=refund_transaction_id(refund_id),
                user_email=txn.user_email,
                transaction_type=TransactionType.REFUND,
                amount=from_cents(refund.get("amount") or 0),
                currency=refund.get("currency") or txn.currency,
                status=_REFUND_STATUS.get(refund.get("status", ""), TransactionStatus.COMPLETED),
                payment_reference=txn.payment_reference,
                reference_id=txn.reference_id,
                refund_reason=refund.get("reason"),
                original_transaction_id=txn.id,
                external_refund_id=refund_id,
                created_at=now,
                updated_at=now,
            )
        )
        if created:
            logger.info("Recorded refund %s for transaction %s", refund_id, txn.id)
