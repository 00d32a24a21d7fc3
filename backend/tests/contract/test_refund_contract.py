"""Contract tests for POST /api/refunds.

Test categories:
- Authentication and authorization (401 / 403)
- Request validation (400 / 413 / 415)
- Refund outcomes (200 / 404 / 400)
- Rate limiting (429 with Retry-After)
"""

import json
from decimal import Decimal
from typing import Any, Callable
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from starlette.status import (
    HTTP_200_OK,
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    HTTP_429_TOO_MANY_REQUESTS,
)

from conftest import ADMIN_EMAIL, GUEST_EMAIL, HOST_EMAIL, as_user
from marketplace.models import Booking, Listing, Transaction, TransactionStatus, User
from marketplace.services.stripe_service import StripeService

REFUNDS_URL = "/api/refunds"


@pytest.fixture
def refundable_charge(
    seed: Callable[..., None],
    sample_charge: Transaction,
    sample_booking: Booking,
    sample_listing: Listing,
    admin_user: User,
) -> Transaction:
    seed(sample_charge, sample_booking, sample_listing, admin_user)
    return sample_charge


@pytest.fixture
def stripe_refund() -> Any:
    with patch.object(
        StripeService,
        "create_refund",
        return_value={"refund_id": "re_contract", "amount": 0, "status": "succeeded"},
    ) as mock_refund:
        yield mock_refund


# === Authentication ===


class TestRefundAuthorization:
    def test_returns_401_without_caller_identity(self, client: TestClient) -> None:
        response = client.post(REFUNDS_URL, json={"transaction_id": "TXN-001"})

        assert response.status_code == HTTP_401_UNAUTHORIZED
        data = response.json()
        assert data["success"] is False
        assert data["error_code"] == "ERR_AUTH_001"

    def test_returns_403_for_guest(
        self, client: TestClient, refundable_charge: Transaction, stripe_refund: Any
    ) -> None:
        response = client.post(
            REFUNDS_URL, json={"transaction_id": "TXN-001"}, headers=as_user(GUEST_EMAIL)
        )

        assert response.status_code == HTTP_403_FORBIDDEN
        assert response.json()["error"] == "Not authorized to perform this action"
        stripe_refund.assert_not_called()

    def test_listing_owner_may_refund(
        self, client: TestClient, refundable_charge: Transaction, stripe_refund: Any
    ) -> None:
        response = client.post(
            REFUNDS_URL,
            json={"transaction_id": "TXN-001", "refund_amount": 10, "booking_id": "BKG-001"},
            headers=as_user(HOST_EMAIL),
        )

        assert response.status_code == HTTP_200_OK
        assert response.json()["amount"] == 10.0


# === Request Validation ===


class TestRefundRequestValidation:
    def test_returns_415_for_non_json_body(self, client: TestClient) -> None:
        response = client.post(
            REFUNDS_URL,
            content="transaction_id=TXN-001",
            headers={"Content-Type": "application/x-www-form-urlencoded", **as_user(ADMIN_EMAIL)},
        )

        assert response.status_code == HTTP_415_UNSUPPORTED_MEDIA_TYPE
        assert response.json()["error_code"] == "ERR_VALIDATION_004"

    def test_returns_400_for_malformed_json(self, client: TestClient) -> None:
        response = client.post(
            REFUNDS_URL,
            content="{not json",
            headers={"Content-Type": "application/json", **as_user(ADMIN_EMAIL)},
        )

        assert response.status_code == HTTP_400_BAD_REQUEST
        assert response.json()["error_code"] == "ERR_VALIDATION_002"

    def test_returns_413_for_oversized_body(self, client: TestClient) -> None:
        body = json.dumps({"transaction_id": "TXN-001", "refund_reason": "x" * (1024 * 1024)})

        response = client.post(
            REFUNDS_URL,
            content=body,
            headers={"Content-Type": "application/json", **as_user(ADMIN_EMAIL)},
        )

        assert response.status_code == HTTP_413_REQUEST_ENTITY_TOO_LARGE
        data = response.json()
        assert data["error_code"] == "ERR_VALIDATION_003"
        assert data["error"].startswith("Request too large (1.0MB)")

    def test_returns_400_for_missing_transaction_id(self, client: TestClient) -> None:
        response = client.post(
            REFUNDS_URL, json={"refund_amount": 5}, headers=as_user(ADMIN_EMAIL)
        )

        assert response.status_code == HTTP_400_BAD_REQUEST
        data = response.json()
        assert data["error_code"] == "ERR_VALIDATION_001"
        assert data["details"]["errors"][0]["loc"] == ["transaction_id"]

    @pytest.mark.parametrize("amount", [40.005, 0, -5])
    def test_returns_400_for_amount_not_in_positive_cents(
        self,
        client: TestClient,
        refundable_charge: Transaction,
        stripe_refund: Any,
        amount: float,
    ) -> None:
        response = client.post(
            REFUNDS_URL,
            json={"transaction_id": "TXN-001", "refund_amount": amount},
            headers=as_user(ADMIN_EMAIL),
        )

        assert response.status_code == HTTP_400_BAD_REQUEST
        data = response.json()
        assert data["error_code"] == "ERR_VALIDATION_001"
        assert data["details"]["errors"][0]["loc"] == ["refund_amount"]
        stripe_refund.assert_not_called()


# === Refund Outcomes ===


class TestRefundOutcomes:
    def test_admin_full_refund(
        self,
        client: TestClient,
        refundable_charge: Transaction,
        stripe_refund: Any,
        fetch: Callable[[type, str], Any],
    ) -> None:
        response = client.post(
            REFUNDS_URL,
            json={"transaction_id": "TXN-001", "refund_reason": "Host cancelled"},
            headers=as_user(ADMIN_EMAIL),
        )

        assert response.status_code == HTTP_200_OK
        assert response.json() == {
            "success": True,
            "refund_id": "re_contract",
            "amount": 100.0,
            "transaction_id": "REF-re_contract",
        }
        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "9"
        assert response.headers["X-RateLimit-Reset"].endswith("Z")
        charge = fetch(Transaction, "TXN-001")
        assert charge.status == TransactionStatus.REFUNDED
        assert charge.refund_amount == Decimal("100.00")

    def test_returns_404_for_unknown_transaction(
        self, client: TestClient, refundable_charge: Transaction
    ) -> None:
        response = client.post(
            REFUNDS_URL, json={"transaction_id": "TXN-404"}, headers=as_user(ADMIN_EMAIL)
        )

        assert response.status_code == HTTP_404_NOT_FOUND
        assert response.json()["error"] == "Transaction not found"

    def test_returns_400_when_amount_exceeds_balance(
        self, client: TestClient, refundable_charge: Transaction, stripe_refund: Any
    ) -> None:
        response = client.post(
            REFUNDS_URL,
            json={"transaction_id": "TXN-001", "refund_amount": 150.5},
            headers=as_user(ADMIN_EMAIL),
        )

        assert response.status_code == HTTP_400_BAD_REQUEST
        data = response.json()
        assert data["error"] == "Refund amount exceeds remaining refundable balance"
        assert data["details"] == {"requested": "150.50", "remaining": "100.00"}
        stripe_refund.assert_not_called()

    def test_returns_400_for_refunded_transaction(
        self,
        client: TestClient,
        seed: Callable[..., None],
        sample_charge: Transaction,
        admin_user: User,
    ) -> None:
        seed(sample_charge.model_copy(update={"status": TransactionStatus.REFUNDED}), admin_user)

        response = client.post(
            REFUNDS_URL, json={"transaction_id": "TXN-001"}, headers=as_user(ADMIN_EMAIL)
        )

        assert response.status_code == HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "Transaction already refunded"


# === Rate Limiting ===


class TestRefundRateLimit:
    def test_anonymous_caller_is_limited_before_authentication(
        self, client: TestClient
    ) -> None:
        statuses = [
            client.post(REFUNDS_URL, json={"transaction_id": "TXN-001"}).status_code
            for _ in range(5)
        ]

        response = client.post(REFUNDS_URL, json={"transaction_id": "TXN-001"})

        assert statuses == [HTTP_401_UNAUTHORIZED] * 5
        assert response.status_code == HTTP_429_TOO_MANY_REQUESTS
        assert response.json() == {
            "error": "Too many requests",
            "message": "Rate limit exceeded. Please try again later.",
            "retryAfter": int(response.headers["Retry-After"]),
        }
        assert 0 < int(response.headers["Retry-After"]) <= 60
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_callers_are_limited_independently(
        self, client: TestClient, refundable_charge: Transaction
    ) -> None:
        for _ in range(5):
            client.post(REFUNDS_URL, json={"transaction_id": "TXN-404"})

        response = client.post(
            REFUNDS_URL, json={"transaction_id": "TXN-404"}, headers=as_user(ADMIN_EMAIL)
        )

        assert response.status_code == HTTP_404_NOT_FOUND
