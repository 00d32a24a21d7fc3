"""Stripe Identity verification sessions and their outcome events."""

import asyncio
import datetime as dt
from typing import Any

from marketplace.config import APP_URL, IDENTITY_SESSION_REUSE_HOURS
from marketplace.models.enums import IdentityVerificationStatus, NotificationType
from marketplace.models.errors import ErrorCode, ValidationError
from marketplace.models.user import User
from marketplace.models.webhook import HandlerResult, ProcessingResult, WebhookEvent
from marketplace.services.entity_store import EntityStore
from marketplace.services.notification_service import NotificationService
from marketplace.services.stripe_service import StripeService, StripeServiceError
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)

_FAILURE_STATUS = {
    "identity.verification_session.requires_input": IdentityVerificationStatus.REQUIRES_INPUT,
    "identity.verification_session.canceled": IdentityVerificationStatus.CANCELED,
}


def _expected_status(user: User) -> Any:
    if user.identity_verification_status == IdentityVerificationStatus.NONE:
        return (IdentityVerificationStatus.NONE, None)
    return user.identity_verification_status


class IdentityService:
    """Starts verification sessions and applies their results to users."""

    def __init__(
        self,
        store: EntityStore,
        stripe_service: StripeService,
        notifications: NotificationService,
    ) -> None:
        self._store = store
        self._stripe = stripe_service
        self._notifications = notifications

    async def _session_owner(self, event: WebhookEvent) -> User | None:
        user_email = event.metadata.get("user_email")
        if not user_email:
            logger.warning("No user email in verification session %s", event.object.get("id"))
            return None
        return await self._store.get(User, user_email)

    async def handle_verified(self, event: WebhookEvent) -> HandlerResult:
        """Process identity.verification_session.verified."""
        session = event.object
        user = await self._session_owner(event)
        if user is None:
            return ProcessingResult.SKIPPED, "User not found"
        if (
            user.identity_verification_status == IdentityVerificationStatus.VERIFIED
            and user.identity_verification_session_id == session.get("id")
        ):
            return ProcessingResult.SKIPPED, "Identity already verified"

        updated = await self._store.update(
            User,
            user.email,
            {
                "identity_verification_status": IdentityVerificationStatus.VERIFIED,
                "identity_verification_session_id": session.get("id"),
                "identity_verification_error": None,
            },
            expected={"identity_verification_status": _expected_status(user)},
        )
        if updated is None:
            return ProcessingResult.SKIPPED, "Verification state changed concurrently"

        self._notifications.notify(
            user.email,
            NotificationType.VERIFICATION,
            "Identity Verified",
            "Congratulations! Your identity has been successfully verified. "
            "You now have a verified badge on your profile.",
        )
        logger.info("Identity verified for %s (session %s)", user.email, session.get("id"))
        return ProcessingResult.SUCCESS, None

    async def handle_failed(self, event: WebhookEvent) -> HandlerResult:
        """Process identity.verification_session.requires_input and .canceled.

        A verified user is never demoted by a failure event, which may be a
        late delivery for the session that verified them.
        """
        session = event.object
        user = await self._session_owner(event)
        if user is None:
            return ProcessingResult.SKIPPED, "User not found"
        if user.identity_verification_status == IdentityVerificationStatus.VERIFIED:
            return ProcessingResult.SKIPPED, "Identity already verified"

        new_status = _FAILURE_STATUS[event.type]
        last_error = session.get("last_error") or {}
        updated = await self._store.update(
            User,
            user.email,
            {
                "identity_verification_status": new_status,
                "identity_verification_session_id": session.get("id"),
                "identity_verification_error": last_error.get("code"),
            },
            expected={"identity_verification_status": _expected_status(user)},
        )
        if updated is None:
            return ProcessingResult.SKIPPED, "Verification state changed concurrently"

        self._notifications.notify(
            user.email,
            NotificationType.VERIFICATION,
            "Identity Verification Failed",
            "We were unable to verify your identity. Please try again or contact "
            "support if you need assistance.",
        )
        logger.info(
            "Identity verification %s for %s (reason: %s)",
            new_status.value,
            user.email,
            last_error.get("code"),
        )
        return ProcessingResult.SUCCESS, None

    async def _reusable_session(self, user: User) -> dict[str, Any] | None:
        """A recent pending session still waiting for input, if any."""
        if (
            user.identity_verification_status != IdentityVerificationStatus.PENDING
            or not user.identity_verification_session_id
            or not user.identity_verification_started
        ):
            return None
        started = user.identity_verification_started
        if started.tzinfo is None:
            started = started.replace(tzinfo=dt.UTC)
        if dt.datetime.now(dt.UTC) - started >= dt.timedelta(hours=IDENTITY_SESSION_REUSE_HOURS):
            return None

        try:
            session = await asyncio.to_thread(
                self._stripe.retrieve_identity_verification_session,
                user.identity_verification_session_id,
            )
        except StripeServiceError as e:
            logger.warning("Could not retrieve verification session, creating a new one: %s", e)
            return None
        return session if session["status"] == "requires_input" else None

    async def create_verification_session(self, user: User) -> dict[str, Any]:
        """Start (or resume) an identity verification for the caller.

        Args:
            user: Authenticated caller

        Returns:
            Dict with success, session_id, client_secret and url

        Raises:
            ValidationError: The user is already verified
            StripeServiceError: Session creation failed
        """
        if user.identity_verification_status == IdentityVerificationStatus.VERIFIED:
            raise ValidationError(ErrorCode.ALREADY_VERIFIED)

        existing = await self._reusable_session(user)
        if existing is not None:
            logger.info(
                "Reusing verification session %s for %s", existing["session_id"], user.email
            )
            return {
                "success": True,
                "session_id": existing["session_id"],
                "client_secret": existing["client_secret"],
                "url": existing["url"],
            }

        session = await asyncio.to_thread(
            self._stripe.create_identity_verification_session,
            user_email=user.email,
            return_url=f"{APP_URL}/Profile?session_id={{VERIFICATION_SESSION_ID}}",
        )

        updated = await self._store.update(
            User,
            user.email,
            {
                "identity_verification_status": IdentityVerificationStatus.PENDING,
                "identity_verification_session_id": session["session_id"],
                "identity_verification_started": dt.datetime.now(dt.UTC),
                "identity_verification_error": None,
            },
        )
        if updated is None:
            logger.warning(
                "No user record for %s; session %s not tracked", user.email, session["session_id"]
            )

        return {
            "success": True,
            "session_id": session["session_id"],
            "client_secret": session["client_secret"],
            "url": session["url"],
        }
