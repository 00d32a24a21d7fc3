"""Unit tests for identity verification sessions and outcome events."""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from unittest.mock import MagicMock

import pytest

from conftest import GUEST_EMAIL, make_event
from marketplace.models import IdentityVerificationStatus, ProcessingResult, User, WebhookEvent
from marketplace.models.errors import ErrorCode, ValidationError
from marketplace.services.identity_service import IdentityService
from marketplace.services.notification_service import NotificationService
from marketplace.services.stripe_service import StripeServiceError

NEW_SESSION = {
    "session_id": "vs_new",
    "client_secret": "vs_new_secret",
    "url": "https://verify.stripe.com/start/vs_new",
}


def _session_event(event_type: str, session_id: str = "vs_1", **session: Any) -> WebhookEvent:
    obj = {"id": session_id, "metadata": {"user_email": GUEST_EMAIL}}
    obj.update(session)
    return WebhookEvent.from_payload(make_event(event_type, obj))


# === Outcome Events ===


class TestVerificationEvents:
    @pytest.mark.asyncio
    async def test_verified(
        self,
        identity_service: IdentityService,
        notifications: NotificationService,
        seed: Callable[..., None],
        fetch: Callable[[type, str], Any],
        notifications_for: Callable[[str], list[dict[str, Any]]],
        guest_user: User,
    ) -> None:
        seed(
            guest_user.model_copy(
                update={
                    "identity_verification_status": IdentityVerificationStatus.REQUIRES_INPUT,
                    "identity_verification_error": "document_expired",
                }
            )
        )

        result = await identity_service.handle_verified(
            _session_event("identity.verification_session.verified")
        )
        await notifications.drain()

        assert result == (ProcessingResult.SUCCESS, None)
        user = fetch(User, GUEST_EMAIL)
        assert user.identity_verification_status == IdentityVerificationStatus.VERIFIED
        assert user.identity_verification_session_id == "vs_1"
        assert user.identity_verification_error is None
        assert [n["title"] for n in notifications_for(GUEST_EMAIL)] == ["Identity Verified"]

    @pytest.mark.asyncio
    async def test_verified_redelivery_is_skipped(
        self,
        identity_service: IdentityService,
        seed: Callable[..., None],
        guest_user: User,
    ) -> None:
        seed(
            guest_user.model_copy(
                update={
                    "identity_verification_status": IdentityVerificationStatus.VERIFIED,
                    "identity_verification_session_id": "vs_1",
                }
            )
        )

        result = await identity_service.handle_verified(
            _session_event("identity.verification_session.verified")
        )

        assert result == (ProcessingResult.SKIPPED, "Identity already verified")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("event_type", "status"),
        [
            (
                "identity.verification_session.requires_input",
                IdentityVerificationStatus.REQUIRES_INPUT,
            ),
            ("identity.verification_session.canceled", IdentityVerificationStatus.CANCELED),
        ],
    )
    async def test_failure_records_reason(
        self,
        identity_service: IdentityService,
        notifications: NotificationService,
        seed: Callable[..., None],
        fetch: Callable[[type, str], Any],
        notifications_for: Callable[[str], list[dict[str, Any]]],
        guest_user: User,
        event_type: str,
        status: IdentityVerificationStatus,
    ) -> None:
        seed(
            guest_user.model_copy(
                update={"identity_verification_status": IdentityVerificationStatus.PENDING}
            )
        )

        result = await identity_service.handle_failed(
            _session_event(event_type, last_error={"code": "selfie_face_mismatch"})
        )
        await notifications.drain()

        assert result == (ProcessingResult.SUCCESS, None)
        user = fetch(User, GUEST_EMAIL)
        assert user.identity_verification_status == status
        assert user.identity_verification_error == "selfie_face_mismatch"
        assert [n["title"] for n in notifications_for(GUEST_EMAIL)] == [
            "Identity Verification Failed"
        ]

    @pytest.mark.asyncio
    async def test_failure_never_demotes_verified_user(
        self,
        identity_service: IdentityService,
        seed: Callable[..., None],
        fetch: Callable[[type, str], Any],
        guest_user: User,
    ) -> None:
        seed(
            guest_user.model_copy(
                update={
                    "identity_verification_status": IdentityVerificationStatus.VERIFIED,
                    "identity_verification_session_id": "vs_1",
                }
            )
        )

        result = await identity_service.handle_failed(
            _session_event("identity.verification_session.requires_input", session_id="vs_old")
        )

        assert result == (ProcessingResult.SKIPPED, "Identity already verified")
        user = fetch(User, GUEST_EMAIL)
        assert user.identity_verification_status == IdentityVerificationStatus.VERIFIED

    @pytest.mark.asyncio
    async def test_unknown_user_is_skipped(
        self, identity_service: IdentityService, create_tables: None
    ) -> None:
        result = await identity_service.handle_verified(
            _session_event("identity.verification_session.verified")
        )

        assert result == (ProcessingResult.SKIPPED, "User not found")


# === Session Creation ===


class TestCreateVerificationSession:
    """Tests for starting identity verification."""

    @pytest.mark.asyncio
    async def test_creates_session_and_marks_pending(
        self,
        identity_service: IdentityService,
        stripe_mock: MagicMock,
        seed: Callable[..., None],
        fetch: Callable[[type, str], Any],
        guest_user: User,
    ) -> None:
        seed(guest_user)
        stripe_mock.create_identity_verification_session.return_value = NEW_SESSION

        result = await identity_service.create_verification_session(guest_user)

        assert result == {"success": True, **NEW_SESSION}
        stripe_mock.create_identity_verification_session.assert_called_once_with(
            user_email=GUEST_EMAIL,
            return_url="http://localhost:3000/Profile?session_id={VERIFICATION_SESSION_ID}",
        )
        user = fetch(User, GUEST_EMAIL)
        assert user.identity_verification_status == IdentityVerificationStatus.PENDING
        assert user.identity_verification_session_id == "vs_new"
        assert user.identity_verification_started is not None

    @pytest.mark.asyncio
    async def test_verified_user_is_rejected(
        self, identity_service: IdentityService, stripe_mock: MagicMock, guest_user: User
    ) -> None:
        verified = guest_user.model_copy(
            update={"identity_verification_status": IdentityVerificationStatus.VERIFIED}
        )

        with pytest.raises(ValidationError) as exc_info:
            await identity_service.create_verification_session(verified)

        assert exc_info.value.code == ErrorCode.ALREADY_VERIFIED
        stripe_mock.create_identity_verification_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_recent_pending_session_is_reused(
        self,
        identity_service: IdentityService,
        stripe_mock: MagicMock,
        guest_user: User,
        create_tables: None,
    ) -> None:
        pending = guest_user.model_copy(
            update={
                "identity_verification_status": IdentityVerificationStatus.PENDING,
                "identity_verification_session_id": "vs_1",
                "identity_verification_started": datetime.now(timezone.utc)
                - timedelta(hours=1),
            }
        )
        stripe_mock.retrieve_identity_verification_session.return_value = {
            "session_id": "vs_1",
            "status": "requires_input",
            "client_secret": "vs_1_secret",
            "url": "https://verify.stripe.com/start/vs_1",
        }

        result = await identity_service.create_verification_session(pending)

        assert result["session_id"] == "vs_1"
        stripe_mock.create_identity_verification_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_stale_session_is_replaced(
        self,
        identity_service: IdentityService,
        stripe_mock: MagicMock,
        seed: Callable[..., None],
        guest_user: User,
    ) -> None:
        pending = guest_user.model_copy(
            update={
                "identity_verification_status": IdentityVerificationStatus.PENDING,
                "identity_verification_session_id": "vs_1",
                "identity_verification_started": datetime.now(timezone.utc)
                - timedelta(hours=25),
            }
        )
        seed(pending)
        stripe_mock.create_identity_verification_session.return_value = NEW_SESSION

        result = await identity_service.create_verification_session(pending)

        assert result["session_id"] == "vs_new"
        stripe_mock.retrieve_identity_verification_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_unretrievable_session_is_replaced(
        self,
        identity_service: IdentityService,
        stripe_mock: MagicMock,
        seed: Callable[..., None],
        guest_user: User,
    ) -> None:
        pending = guest_user.model_copy(
            update={
                "identity_verification_status": IdentityVerificationStatus.PENDING,
                "identity_verification_session_id": "vs_gone",
                "identity_verification_started": datetime.now(timezone.utc),
            }
        )
        seed(pending)
        stripe_mock.retrieve_identity_verification_session.side_effect = StripeServiceError(
            "Failed to retrieve verification session"
        )
        stripe_mock.create_identity_verification_session.return_value = NEW_SESSION

        result = await identity_service.create_verification_session(pending)

        assert result["session_id"] == "vs_new"
