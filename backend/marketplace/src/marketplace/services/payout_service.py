"""Host payouts over Stripe Connect transfers.

Handles:
- Admin-triggered payouts (transfer the payout's net amount to the host)
- transfer.created / transfer.paid / transfer.failed reconciliation
- account.updated: payout method verification state
"""

import asyncio
import datetime as dt
from typing import Any

from marketplace.models.booking import Booking
from marketplace.models.enums import NotificationType, PayoutMethodStatus, PayoutStatus
from marketplace.models.errors import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    ValidationError,
    is_stripe_error_retryable,
)
from marketplace.models.payout import Payout, PayoutMethod
from marketplace.models.transaction import Transaction
from marketplace.models.webhook import HandlerResult, ProcessingResult, WebhookEvent
from marketplace.services.entity_store import EntityStore
from marketplace.services.notification_service import NotificationService
from marketplace.services.stripe_service import StripeService, StripeServiceError
from marketplace.utils.logging import get_logger, log_payment_operation
from marketplace.utils.money import to_cents

logger = get_logger(__name__)

# A failed payout may be retried; only completed payouts are final
RETRYABLE_PAYOUT_STATES = (PayoutStatus.PENDING, PayoutStatus.FAILED)

TRANSFER_FAILED_MESSAGE = "Transfer failed"


def transfer_idempotency_key(payout: Payout) -> str:
    """Stripe idempotency key for the current transfer attempt of a payout."""
    return f"payout-{payout.id}-{payout.attempt}"


class PayoutService:
    """Transfers host earnings and mirrors transfer and account events."""

    def __init__(
        self,
        store: EntityStore,
        stripe_service: StripeService,
        notifications: NotificationService,
    ) -> None:
        self._store = store
        self._stripe = stripe_service
        self._notifications = notifications

    async def _transfer_destination(self, host_identity: str) -> PayoutMethod | None:
        """Verified Stripe payout method of a host, default method first."""
        methods = await self._store.filter(PayoutMethod, "host_identity", host_identity)
        usable = [m for m in methods if m.can_receive_transfers and m.external_account_id]
        usable.sort(key=lambda m: not m.is_default)
        return usable[0] if usable else None

    async def _transfer_group(self, payout: Payout) -> str | None:
        """Payment reference of the charge the payout is paid from."""
        if payout.booking_id:
            booking = await self._store.get(Booking, payout.booking_id)
            if booking is None:
                raise NotFoundError(ErrorCode.BOOKING_NOT_FOUND)
            return booking.payment_reference
        if payout.transaction_id:
            txn = await self._store.get(Transaction, payout.transaction_id)
            return txn.payment_reference if txn else None
        return None

    async def _fail_attempt(self, payout: Payout, reason: str) -> Payout | None:
        """Mark the payout failed and move on to a fresh transfer attempt."""
        return await self._store.update(
            Payout,
            payout.id,
            {
                "status": PayoutStatus.FAILED,
                "error_message": reason,
                "attempt": payout.attempt + 1,
            },
            expected={
                "status": RETRYABLE_PAYOUT_STATES,
                "attempt": (payout.attempt, None) if payout.attempt == 0 else payout.attempt,
            },
        )

    async def process_payout(self, payout_id: str) -> dict[str, Any]:
        """Transfer a payout's net amount to the host's connected account.

        Args:
            payout_id: Payout to process

        Returns:
            Dict with success, transfer_id, amount and payout_id

        Raises:
            NotFoundError: Payout or its booking does not exist
            ConflictError: Payout already completed
            ValidationError: Host has no verified Stripe payout method
            StripeServiceError: The transfer failed
        """
        payout = await self._store.get(Payout, payout_id)
        if payout is None:
            raise NotFoundError(ErrorCode.PAYOUT_NOT_FOUND)
        if payout.status == PayoutStatus.COMPLETED:
            raise ConflictError(ErrorCode.PAYOUT_ALREADY_COMPLETED)

        method = await self._transfer_destination(payout.host_identity)
        if method is None:
            await self._store.update(
                Payout,
                payout.id,
                {
                    "status": PayoutStatus.FAILED,
                    "error_message": "No verified Stripe account found for host",
                },
                expected={"status": RETRYABLE_PAYOUT_STATES},
            )
            log_payment_operation(
                logger,
                "process_payout",
                payout_id=payout.id,
                status=PayoutStatus.FAILED.value,
                error="No verified payout method",
            )
            raise ValidationError(ErrorCode.PAYOUT_METHOD_NOT_VERIFIED)

        transfer_group = await self._transfer_group(payout)
        metadata = {"payout_id": payout.id, "host_email": payout.host_identity}
        if payout.booking_id:
            metadata["booking_id"] = payout.booking_id
        if payout.transaction_id:
            metadata["transaction_id"] = payout.transaction_id

        amount_cents = to_cents(payout.net_amount)
        try:
            transfer = await asyncio.to_thread(
                self._stripe.create_transfer,
                amount_cents=amount_cents,
                destination=method.external_account_id,
                idempotency_key=transfer_idempotency_key(payout),
                transfer_group=transfer_group,
                metadata=metadata,
            )
        except StripeServiceError as e:
            # A declined transfer is cached under its key; transient errors keep it
            if e.stripe_error_code and not is_stripe_error_retryable(e.stripe_error_code):
                await self._fail_attempt(payout, e.message)
            log_payment_operation(
                logger,
                "process_payout",
                payout_id=payout.id,
                amount_cents=amount_cents,
                error=e.message,
            )
            raise

        updated = await self._store.update(
            Payout,
            payout.id,
            {
                "status": PayoutStatus.COMPLETED,
                "transaction_ref": transfer["transfer_id"],
                "payout_date": dt.datetime.now(dt.UTC),
                "error_message": None,
            },
            expected={"status": RETRYABLE_PAYOUT_STATES},
        )
        if updated is not None:
            self._notifications.notify(
                payout.host_identity,
                NotificationType.PAYOUT,
                "Payout Completed",
                f"${payout.net_amount:.2f} has been transferred to your Stripe account.",
                reference_id=payout.id,
            )
        else:
            # transfer.created arrived first and completed it already
            logger.info("Payout %s was completed concurrently", payout.id)

        log_payment_operation(
            logger,
            "process_payout",
            payout_id=payout.id,
            booking_id=payout.booking_id,
            amount_cents=amount_cents,
            status=PayoutStatus.COMPLETED.value,
            transfer_id=transfer["transfer_id"],
        )
        return {
            "success": True,
            "transfer_id": transfer["transfer_id"],
            "amount": payout.net_amount,
            "payout_id": payout.id,
        }

    async def _find_payout(self, transfer: dict[str, Any]) -> Payout | None:
        transfer_id = transfer.get("id")
        if transfer_id:
            payout = await self._store.find_one(Payout, "transaction_ref", transfer_id)
            if payout:
                return payout
        payout_id = (transfer.get("metadata") or {}).get("payout_id")
        if payout_id:
            return await self._store.get(Payout, payout_id)
        return None

    async def handle_transfer_event(self, event: WebhookEvent) -> HandlerResult:
        """Process transfer.created, transfer.paid and transfer.failed.

        created/paid complete a payout still pending. failed moves a pending
        payout to failed and opens a new transfer attempt; a completed payout
        stays completed and only records the failure.
        """
        transfer = event.object
        payout = await self._find_payout(transfer)
        if payout is None:
            logger.warning("No payout found for transfer %s", transfer.get("id"))
            return ProcessingResult.SKIPPED, "Payout not found"

        if event.type == "transfer.failed":
            if payout.status == PayoutStatus.FAILED:
                return ProcessingResult.SKIPPED, "Payout already failed"

            if payout.status == PayoutStatus.COMPLETED:
                if payout.transaction_ref and transfer.get("id") != payout.transaction_ref:
                    return ProcessingResult.SKIPPED, "Transfer superseded by a later attempt"
                # Completed is final; the failure is recorded for manual follow-up
                updated = await self._store.update(
                    Payout,
                    payout.id,
                    {"error_message": TRANSFER_FAILED_MESSAGE},
                    expected={"status": PayoutStatus.COMPLETED, "error_message": None},
                )
                if updated is None:
                    return ProcessingResult.SKIPPED, "Payout failure already recorded"
            else:
                updated = await self._fail_attempt(payout, TRANSFER_FAILED_MESSAGE)
                if updated is None:
                    return ProcessingResult.SKIPPED, "Payout changed concurrently"

            self._notifications.notify(
                payout.host_identity,
                NotificationType.PAYOUT,
                "Payout Failed",
                "There was an issue processing your payout. Please check your Stripe account.",
                reference_id=payout.id,
            )
            log_payment_operation(
                logger,
                "transfer_failed",
                payout_id=payout.id,
                status=updated.status.value,
                transfer_id=transfer.get("id"),
            )
            return ProcessingResult.SUCCESS, None

        updated = await self._store.update(
            Payout,
            payout.id,
            {
                "status": PayoutStatus.COMPLETED,
                "transaction_ref": transfer.get("id") or payout.transaction_ref,
                "payout_date": payout.payout_date or dt.datetime.now(dt.UTC),
            },
            expected={"status": PayoutStatus.PENDING},
        )
        if updated is None:
            return ProcessingResult.SKIPPED, f"Payout is {payout.status.value}"

        log_payment_operation(
            logger,
            "transfer_completed",
            payout_id=payout.id,
            amount_cents=transfer.get("amount"),
            status=PayoutStatus.COMPLETED.value,
        )
        return ProcessingResult.SUCCESS, None

    async def handle_account_updated(self, event: WebhookEvent) -> HandlerResult:
        """Process account.updated for a host's connected account."""
        account = event.object
        method = await self._store.find_one(
            PayoutMethod, "external_account_id", account.get("id", "")
        )
        if method is None:
            return ProcessingResult.SKIPPED, "Payout method not found"

        requirements = account.get("requirements") or {}
        is_verified = bool(
            account.get("charges_enabled")
            and account.get("payouts_enabled")
            and not requirements.get("currently_due")
        )
        if is_verified:
            new_status = PayoutMethodStatus.VERIFIED
        elif requirements.get("disabled_reason"):
            new_status = PayoutMethodStatus.FAILED
        else:
            new_status = PayoutMethodStatus.PENDING_VERIFICATION

        if new_status == method.status:
            return ProcessingResult.SKIPPED, f"Payout method already {new_status.value}"

        updated = await self._store.update(
            PayoutMethod,
            method.id,
            {
                "status": new_status,
                "verified_date": dt.datetime.now(dt.UTC) if is_verified else None,
            },
            expected={"status": method.status},
        )
        if updated is None:
            return ProcessingResult.SKIPPED, "Payout method changed concurrently"

        if is_verified:
            self._notifications.notify(
                method.host_identity,
                NotificationType.PAYOUT,
                "Stripe Account Verified",
                "Your Stripe account is now verified and ready to receive payouts!",
            )
        logger.info("Payout method %s status: %s", method.id, new_status.value)
        return ProcessingResult.SUCCESS, None
