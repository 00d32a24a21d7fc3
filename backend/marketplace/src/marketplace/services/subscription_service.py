"""Subscription lifecycle mirroring and user-requested cancellation.

The upstream subscription status is copied onto the user verbatim. Events
may arrive out of order, so each applied event records its ``created``
timestamp on the user and older events are ignored. A subscription the
user canceled is never brought back by a late event for the same
subscription id.
"""

import asyncio
import datetime as dt
from typing import Any

from marketplace.models.enums import NotificationType, SubscriptionStatus
from marketplace.models.errors import ErrorCode, ValidationError
from marketplace.models.user import User
from marketplace.models.webhook import HandlerResult, ProcessingResult, WebhookEvent
from marketplace.services.entity_store import EntityStore
from marketplace.services.notification_service import NotificationService
from marketplace.services.stripe_service import StripeService
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)


def _from_timestamp(value: int | None) -> dt.datetime | None:
    return dt.datetime.fromtimestamp(value, dt.UTC) if value else None


def _current_period_end(subscription: dict[str, Any]) -> int | None:
    # Newer API versions only report the period on subscription items
    if subscription.get("current_period_end"):
        return subscription["current_period_end"]
    items = (subscription.get("items") or {}).get("data") or []
    return items[0].get("current_period_end") if items else None


def _expected_status(user: User) -> Any:
    # Users created upstream may not carry the attribute at all
    if user.subscription_status == SubscriptionStatus.NONE.value:
        return (SubscriptionStatus.NONE.value, None)
    return user.subscription_status


class SubscriptionService:
    """Keeps user subscription state in step with Stripe."""

    def __init__(
        self,
        store: EntityStore,
        stripe_service: StripeService,
        notifications: NotificationService,
    ) -> None:
        self._store = store
        self._stripe = stripe_service
        self._notifications = notifications

    async def _subscriber(self, event: WebhookEvent) -> User | None:
        user_email = event.metadata.get("user_email")
        if not user_email:
            logger.warning("No user email in metadata of subscription %s", event.object.get("id"))
            return None
        user = await self._store.get(User, user_email)
        if user is None:
            logger.warning("Subscriber %s not found", user_email)
        return user

    async def handle_subscription_event(self, event: WebhookEvent) -> HandlerResult:
        """Process customer.subscription.* events."""
        user = await self._subscriber(event)
        if user is None:
            return ProcessingResult.SKIPPED, "Subscriber not found"

        subscription = event.object
        if event.type == "customer.subscription.trial_will_end":
            self._notifications.notify(
                user.email,
                NotificationType.PAYMENT,
                "Trial Ending Soon",
                "Your free trial ends in 3 days. Your subscription will begin "
                "automatically unless you cancel.",
                reference_id=subscription.get("id"),
            )
            return ProcessingResult.SUCCESS, None

        deleted = event.type == "customer.subscription.deleted"
        new_status = (
            SubscriptionStatus.CANCELED.value if deleted else subscription.get("status", "")
        )
        subscription_id = subscription.get("id")

        last_applied = user.subscription_event_at
        if last_applied is not None and event.created < last_applied:
            logger.info(
                "Ignoring stale %s for %s (event %d < applied %d)",
                event.type,
                user.email,
                event.created,
                last_applied,
            )
            return ProcessingResult.SKIPPED, "Out-of-order subscription event"

        same_subscription = user.subscription_id == subscription_id
        if (
            same_subscription
            and user.subscription_status == SubscriptionStatus.CANCELED.value
            and new_status != SubscriptionStatus.CANCELED.value
        ):
            return ProcessingResult.SKIPPED, "Subscription was canceled"
        if (
            same_subscription
            and last_applied == event.created
            and user.subscription_status == new_status
        ):
            return ProcessingResult.SKIPPED, "Subscription event already applied"

        changes: dict[str, Any] = {
            "subscription_status": new_status,
            "subscription_id": subscription_id,
            "subscription_event_at": event.created,
        }
        if deleted:
            changes["subscription_trial_end"] = None
            changes["subscription_current_period_end"] = None
        else:
            changes["subscription_trial_end"] = _from_timestamp(subscription.get("trial_end"))
            changes["subscription_current_period_end"] = _from_timestamp(
                _current_period_end(subscription)
            )

        updated = await self._store.update(
            User,
            user.email,
            changes,
            expected={
                "subscription_event_at": last_applied,
                "subscription_status": _expected_status(user),
            },
        )
        if updated is None:
            # Another event for this user was applied in between
            return ProcessingResult.SKIPPED, "Subscription changed concurrently"

        logger.info("Subscription %s for %s is now %s", subscription_id, user.email, new_status)
        if new_status != user.subscription_status:
            self._notify_transition(user.email, new_status, subscription, subscription_id)
        return ProcessingResult.SUCCESS, None

    def _notify_transition(
        self,
        user_email: str,
        status: str,
        subscription: dict[str, Any],
        subscription_id: str | None,
    ) -> None:
        if status == SubscriptionStatus.CANCELED.value:
            title, message = (
                "Subscription Canceled",
                "Your subscription has been canceled. You can resubscribe anytime.",
            )
        elif status == SubscriptionStatus.PAST_DUE.value:
            title, message = (
                "Payment Failed",
                "Your subscription payment failed. Please update your payment method.",
            )
        elif (
            status in (SubscriptionStatus.TRIALING.value, SubscriptionStatus.ACTIVE.value)
            and subscription.get("trial_end")
        ):
            title, message = (
                "Trial Started",
                "Your free trial has begun. Enjoy all premium features!",
            )
        else:
            return

        self._notifications.notify(
            user_email, NotificationType.PAYMENT, title, message, reference_id=subscription_id
        )

    async def cancel_subscription(self, user: User) -> dict[str, Any]:
        """Cancel the caller's subscription at the end of the billing period.

        Args:
            user: Authenticated caller

        Returns:
            Dict with success, message and cancel_at (ISO-8601 or None)

        Raises:
            ValidationError: The user has no subscription
            StripeServiceError: Stripe rejected the update
        """
        if not user.subscription_id:
            raise ValidationError(ErrorCode.NO_ACTIVE_SUBSCRIPTION)

        result = await asyncio.to_thread(
            self._stripe.cancel_subscription_at_period_end, user.subscription_id
        )

        await self._store.update(
            User,
            user.email,
            {"subscription_status": SubscriptionStatus.CANCELED.value},
            expected={"subscription_id": user.subscription_id},
        )
        logger.info("User %s canceled subscription %s", user.email, user.subscription_id)

        cancel_at = _from_timestamp(result.get("cancel_at"))
        return {
            "success": True,
            "message": "Subscription will be canceled at the end of the current billing period",
            "cancel_at": cancel_at.isoformat() if cancel_at else None,
        }
