"""Stripe service for webhook verification, refunds, transfers and subscriptions.

Provides integration with Stripe using the v8+ StripeClient pattern.
Credentials come from STRIPE_SECRET_KEY / STRIPE_WEBHOOK_SECRET when set,
otherwise from SSM Parameter Store. All calls are synchronous; async
callers run them through ``asyncio.to_thread``.
"""

import hashlib
import json
import os
from functools import lru_cache
from typing import Any

import stripe
from stripe import StripeClient

from marketplace.config import DEFAULT_CURRENCY, WEBHOOK_TOLERANCE_SECONDS, ssm_parameter_path
from marketplace.models.errors import (
    ConfigError,
    DependencyError,
    ErrorCode,
    SignatureError,
    is_stripe_error_retryable,
)
from marketplace.utils.logging import get_logger

from .ssm_service import SSMServiceError, get_ssm_service

logger = get_logger(__name__)

# Values Stripe accepts for Refund.reason
STRIPE_REFUND_REASONS = {"duplicate", "fraudulent", "requested_by_customer"}


class StripeServiceError(DependencyError):
    """Raised when a Stripe API call fails."""

    def __init__(self, message: str, stripe_error_code: str | None = None) -> None:
        """Initialize with message and optional Stripe error code.

        Args:
            message: Human-readable error message.
            stripe_error_code: Stripe-specific error code if available.
        """
        details = (
            {
                "stripe_error_code": stripe_error_code,
                "retryable": is_stripe_error_retryable(stripe_error_code),
            }
            if stripe_error_code
            else None
        )
        super().__init__(ErrorCode.STRIPE_API_ERROR, details=details, message=message)
        self.stripe_error_code = stripe_error_code


class StripeService:
    """Service for Stripe operations.

    Handles:
    - Webhook signature verification
    - Refund creation
    - Transfers to connected accounts (host payouts)
    - Subscription cancellation
    - Identity verification sessions
    """

    def __init__(self) -> None:
        self._ssm = get_ssm_service()
        self._client: StripeClient | None = None
        self._webhook_secret: str | None = None

    def _get_secret(self, env_var: str, parameter: str) -> str:
        value = os.environ.get(env_var)
        if value:
            return value
        try:
            return self._ssm.get_parameter(ssm_parameter_path(parameter))
        except SSMServiceError as e:
            logger.error("Stripe secret %s unavailable: %s", parameter, e)
            raise ConfigError(
                ErrorCode.CONFIGURATION_MISSING, details={"setting": env_var}
            ) from e

    def _get_client(self) -> StripeClient:
        """Get or create the Stripe client (lazy initialization).

        Raises:
            ConfigError: If the secret key cannot be resolved.
        """
        if self._client is None:
            secret_key = self._get_secret("STRIPE_SECRET_KEY", "stripe/secret_key")
            self._client = StripeClient(secret_key)
            logger.info("Stripe client initialized")
        return self._client

    def _get_webhook_secret(self) -> str:
        if self._webhook_secret is None:
            self._webhook_secret = self._get_secret(
                "STRIPE_WEBHOOK_SECRET", "stripe/webhook_secret"
            )
        return self._webhook_secret

    def verify_webhook_signature(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """Verify a webhook signature and parse the event.

        The signature is checked against the raw bytes before any JSON
        parsing, with a timestamp tolerance of WEBHOOK_TOLERANCE_SECONDS.

        Args:
            payload: Raw request body bytes.
            signature: Stripe-Signature header value.

        Returns:
            Parsed Stripe event dictionary.

        Raises:
            SignatureError: If the header is missing or the signature is invalid.
            ConfigError: If no webhook secret is configured.
        """
        if not signature:
            logger.warning("Webhook request missing Stripe-Signature header")
            raise SignatureError(
                ErrorCode.INVALID_WEBHOOK_SIGNATURE,
                details={"message": "Missing Stripe-Signature header"},
            )

        webhook_secret = self._get_webhook_secret()

        try:
            stripe.Webhook.construct_event(
                payload, signature, webhook_secret, tolerance=WEBHOOK_TOLERANCE_SECONDS
            )
        except stripe.SignatureVerificationError as e:
            logger.warning("Invalid webhook signature: %s", e)
            raise SignatureError(ErrorCode.INVALID_WEBHOOK_SIGNATURE) from e
        except ValueError as e:
            logger.warning("Signed webhook payload is not valid JSON: %s", e)
            raise SignatureError(
                ErrorCode.INVALID_WEBHOOK_SIGNATURE,
                details={"message": "Invalid payload"},
            ) from e

        event: dict[str, Any] = json.loads(payload)
        logger.info("Webhook signature verified for event: %s", event.get("id"))
        return event

    def create_refund(
        self,
        *,
        payment_intent_id: str,
        amount_cents: int,
        idempotency_key: str,
        reason: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Create a refund for a payment.

        Args:
            payment_intent_id: Stripe PaymentIntent ID (pi_xxx).
            amount_cents: Refund amount in cents.
            idempotency_key: Key that makes a retried request a no-op.
            reason: Reason for the refund. Free text is kept in metadata and
                sent to Stripe as "requested_by_customer".
            metadata: Additional metadata to include.

        Returns:
            Dict with refund_id, amount (cents) and status.

        Raises:
            StripeServiceError: If refund creation fails.
        """
        client = self._get_client()

        refund_metadata = dict(metadata or {})
        if reason:
            refund_metadata["reason"] = reason

        params: dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "amount": amount_cents,
            "reason": reason if reason in STRIPE_REFUND_REASONS else "requested_by_customer",
        }
        if refund_metadata:
            params["metadata"] = refund_metadata

        try:
            logger.info(
                "Creating refund for PaymentIntent %s, amount %d cents",
                payment_intent_id,
                amount_cents,
            )
            refund = client.refunds.create(
                params=params, options={"idempotency_key": idempotency_key}
            )
        except stripe.StripeError as e:
            error_code = getattr(e, "code", None)
            logger.error("Stripe refund creation failed: %s (code: %s)", e, error_code)
            raise StripeServiceError(
                f"Failed to create refund: {e.user_message or e}",
                stripe_error_code=error_code,
            ) from e

        logger.info("Refund created: %s for PaymentIntent %s", refund.id, payment_intent_id)
        return {"refund_id": refund.id, "amount": refund.amount, "status": refund.status}

    def create_transfer(
        self,
        *,
        amount_cents: int,
        destination: str,
        idempotency_key: str,
        transfer_group: str | None = None,
        metadata: dict[str, str] | None = None,
        currency: str = DEFAULT_CURRENCY,
    ) -> dict[str, Any]:
        """Transfer funds to a connected account.

        Args:
            amount_cents: Amount in cents.
            destination: Connected account ID (acct_xxx).
            idempotency_key: Key that makes a retried request a no-op.
            transfer_group: Groups the transfer with the original charge.
            metadata: Metadata to attach (e.g. payout_id).
            currency: ISO currency code.

        Returns:
            Dict with transfer_id and amount (cents).

        Raises:
            StripeServiceError: If the transfer fails.
        """
        client = self._get_client()

        params: dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency,
            "destination": destination,
        }
        if transfer_group:
            params["transfer_group"] = transfer_group
        if metadata:
            params["metadata"] = metadata

        try:
            logger.info("Creating transfer of %d cents to %s", amount_cents, destination)
            transfer = client.transfers.create(
                params=params, options={"idempotency_key": idempotency_key}
            )
        except stripe.StripeError as e:
            error_code = getattr(e, "code", None)
            logger.error("Stripe transfer failed: %s (code: %s)", e, error_code)
            raise StripeServiceError(
                f"Failed to create transfer: {e.user_message or e}",
                stripe_error_code=error_code,
            ) from e

        logger.info("Transfer created: %s to %s", transfer.id, destination)
        return {"transfer_id": transfer.id, "amount": transfer.amount}

    def cancel_subscription_at_period_end(self, subscription_id: str) -> dict[str, Any]:
        """Schedule a subscription to cancel at the end of its billing period.

        Returns:
            Dict with subscription_id, status and cancel_at (unix seconds or None).

        Raises:
            StripeServiceError: If the update fails.
        """
        client = self._get_client()
        try:
            subscription = client.subscriptions.update(
                subscription_id, params={"cancel_at_period_end": True}
            )
        except stripe.StripeError as e:
            error_code = getattr(e, "code", None)
            logger.error("Stripe subscription cancel failed: %s (code: %s)", e, error_code)
            raise StripeServiceError(
                f"Failed to cancel subscription: {e.user_message or e}",
                stripe_error_code=error_code,
            ) from e

        cancel_at = subscription.get("cancel_at") or subscription.get("current_period_end")
        logger.info("Subscription %s set to cancel at %s", subscription_id, cancel_at)
        return {
            "subscription_id": subscription.id,
            "status": subscription.status,
            "cancel_at": cancel_at,
        }

    def create_identity_verification_session(
        self,
        *,
        user_email: str,
        return_url: str | None = None,
    ) -> dict[str, Any]:
        """Start a Stripe Identity document verification session.

        Returns:
            Dict with session_id, client_secret and url.

        Raises:
            StripeServiceError: If session creation fails.
        """
        client = self._get_client()

        params: dict[str, Any] = {
            "type": "document",
            "metadata": {"user_email": user_email},
            "options": {
                "document": {
                    "require_matching_selfie": True,
                    "require_live_capture": True,
                    "allowed_types": ["driving_license", "passport", "id_card"],
                }
            },
        }
        if return_url:
            params["return_url"] = return_url

        try:
            session = client.identity.verification_sessions.create(params=params)
        except stripe.StripeError as e:
            error_code = getattr(e, "code", None)
            logger.error("Stripe identity session failed: %s (code: %s)", e, error_code)
            raise StripeServiceError(
                f"Failed to create verification session: {e.user_message or e}",
                stripe_error_code=error_code,
            ) from e

        logger.info("Identity verification session created: %s", session.id)
        return {
            "session_id": session.id,
            "client_secret": session.client_secret,
            "url": session.url,
        }

    def retrieve_identity_verification_session(self, session_id: str) -> dict[str, Any]:
        """Fetch an existing identity verification session.

        Returns:
            Dict with session_id, status and url.

        Raises:
            StripeServiceError: If the session cannot be retrieved.
        """
        client = self._get_client()
        try:
            session = client.identity.verification_sessions.retrieve(session_id)
        except stripe.StripeError as e:
            error_code = getattr(e, "code", None)
            raise StripeServiceError(
                f"Failed to retrieve verification session: {e.user_message or e}",
                stripe_error_code=error_code,
            ) from e

        return {
            "session_id": session.id,
            "status": session.status,
            "client_secret": session.client_secret,
            "url": session.url,
        }

    @staticmethod
    def compute_payload_hash(payload: bytes) -> str:
        """Compute SHA-256 hash of webhook payload for auditing.

        Args:
            payload: Raw webhook payload bytes.

        Returns:
            Hex-encoded SHA-256 hash.
        """
        return hashlib.sha256(payload).hexdigest()


@lru_cache(maxsize=1)
def get_stripe_service() -> StripeService:
    """Get the shared StripeService instance.

    Returns:
        StripeService: Shared service instance.
    """
    return StripeService()
