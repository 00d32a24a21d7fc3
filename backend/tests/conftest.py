"""Pytest configuration and fixtures for marketplace backend tests.

This module provides reusable fixtures for testing:
- DynamoDB mocking with moto
- Service instances wired to the mocked tables and a mocked Stripe
- Sample data fixtures (charges, bookings, listings, payouts, users)
"""

import hashlib
import hmac
import json
import os
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Generator
from unittest.mock import MagicMock

import boto3
import pytest
from fastapi.testclient import TestClient
from moto import mock_aws
from pydantic import BaseModel

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-marketplace")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_marketplace")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret_for_testing")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")

if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from api.dependencies import reset_services  # noqa: E402
from api.main import app  # noqa: E402
from marketplace.models import (  # noqa: E402
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    Listing,
    Payout,
    PayoutMethod,
    PayoutMethodStatus,
    PayoutStatus,
    Transaction,
    TransactionStatus,
    User,
    UserRole,
)
from marketplace.services.dynamodb import DynamoDBService  # noqa: E402
from marketplace.services.entity_store import EntityStore  # noqa: E402
from marketplace.services.identity_service import IdentityService  # noqa: E402
from marketplace.services.notification_service import NotificationService  # noqa: E402
from marketplace.services.payment_service import PaymentService  # noqa: E402
from marketplace.services.payout_service import PayoutService  # noqa: E402
from marketplace.services.refund_service import RefundService  # noqa: E402
from marketplace.services.stripe_service import StripeService  # noqa: E402
from marketplace.services.subscription_service import SubscriptionService  # noqa: E402
from marketplace.services.webhook_handler import WebhookHandler  # noqa: E402

TABLE_PREFIX = os.environ["DYNAMODB_TABLE_PREFIX"]
TEST_WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]

GUEST_EMAIL = "guest@example.com"
HOST_EMAIL = "host@example.com"
ADMIN_EMAIL = "admin@example.com"
PAYMENT_INTENT_ID = "pi_3ABC123DEF456"


# === Helper Functions ===


def create_stripe_signature(payload: bytes, secret: str = TEST_WEBHOOK_SECRET) -> str:
    """Create a valid Stripe webhook signature.

    Stripe signatures use HMAC-SHA256 with format: t={timestamp},v1={signature}
    """
    timestamp = str(int(time.time()))
    signed_payload = f"{timestamp}.{payload.decode('utf-8')}"
    signature = hmac.new(
        secret.encode("utf-8"),
        signed_payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(
    event_type: str,
    obj: dict[str, Any],
    event_id: str = "evt_1ABC123DEF456",
    created: int | None = None,
) -> dict[str, Any]:
    """Build a Stripe event payload around a data object."""
    return {
        "id": event_id,
        "type": event_type,
        "created": created if created is not None else int(time.time()),
        "data": {"object": obj},
    }


def encode_event(event: dict[str, Any]) -> bytes:
    return json.dumps(event).encode("utf-8")


def _index(attribute: str) -> dict[str, Any]:
    return {
        "IndexName": f"{attribute}-index",
        "KeySchema": [{"AttributeName": attribute, "KeyType": "HASH"}],
        "Projection": {"ProjectionType": "ALL"},
    }


def _table(name: str, key: str, indexes: tuple[str, ...] = ()) -> dict[str, Any]:
    config: dict[str, Any] = {
        "TableName": f"{TABLE_PREFIX}-{name}",
        "KeySchema": [{"AttributeName": key, "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": attribute, "AttributeType": "S"} for attribute in (key, *indexes)
        ],
        "BillingMode": "PAY_PER_REQUEST",
    }
    if indexes:
        config["GlobalSecondaryIndexes"] = [_index(attribute) for attribute in indexes]
    return config


# === Service Singleton Reset ===


@pytest.fixture(autouse=True)
def reset_service_singletons() -> Generator[None, None, None]:
    """Reset cached services before and after each test.

    Ensures tests using mock_aws get fresh DynamoDB/Stripe instances
    inside the mock context rather than reusing a singleton from a
    previous test or non-mocked context.
    """
    reset_services()
    yield
    reset_services()


# === DynamoDB Fixtures ===


@pytest.fixture
def aws_credentials() -> None:
    """Mocked AWS Credentials for moto."""
    if not os.environ.get("AWS_PROFILE"):
        os.environ["AWS_ACCESS_KEY_ID"] = "testing"
        os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
        os.environ["AWS_SECURITY_TOKEN"] = "testing"
        os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "eu-west-1"


@pytest.fixture
def dynamodb_client(aws_credentials: None) -> Generator[Any, None, None]:
    """Create a mocked DynamoDB client."""
    with mock_aws():
        client = boto3.client("dynamodb", region_name="eu-west-1")
        yield client


@pytest.fixture
def create_tables(dynamodb_client: Any) -> None:
    """Create all required DynamoDB tables for testing."""
    tables = [
        _table("transactions", "id", ("payment_reference",)),
        _table("bookings", "id"),
        _table("listings", "id"),
        _table("payouts", "id", ("transaction_ref",)),
        _table("payout-methods", "id", ("host_identity", "external_account_id")),
        _table("users", "email"),
        _table("notifications", "id"),
        _table("webhook-events", "event_id"),
        _table("rate-limits", "identifier"),
    ]
    for table_config in tables:
        dynamodb_client.create_table(**table_config)

    dynamodb_client.update_time_to_live(
        TableName=f"{TABLE_PREFIX}-rate-limits",
        TimeToLiveSpecification={"AttributeName": "expires_at", "Enabled": True},
    )


@pytest.fixture
def db(create_tables: None) -> DynamoDBService:
    """DynamoDBService bound to the mocked tables."""
    return DynamoDBService()


@pytest.fixture
def store(db: DynamoDBService) -> EntityStore:
    return EntityStore(db)


@pytest.fixture
def seed(db: DynamoDBService) -> Callable[..., None]:
    """Write records straight to their tables."""

    def _seed(*records: BaseModel) -> None:
        for record in records:
            db.put_item(type(record).TABLE, record.model_dump())

    return _seed


@pytest.fixture
def fetch(db: DynamoDBService) -> Callable[[type, str], Any]:
    """Read a record back from its table, parsed into its model."""

    def _fetch(model: type, key_value: str) -> Any:
        item = db.get_item(model.TABLE, {model.KEY: key_value})
        return model.model_validate(item) if item else None

    return _fetch


@pytest.fixture
def notifications_for(db: DynamoDBService) -> Callable[[str], list[dict[str, Any]]]:
    """List stored notifications of one user."""

    def _notifications_for(user_email: str) -> list[dict[str, Any]]:
        return [item for item in db.scan("notifications") if item["user_email"] == user_email]

    return _notifications_for


# === API Fixtures ===


@pytest.fixture
def client(create_tables: None) -> Generator[TestClient, None, None]:
    """Test client over the mocked tables, with the app lifespan running."""
    with TestClient(app) as test_client:
        yield test_client


def as_user(email: str) -> dict[str, str]:
    """Headers carrying the caller identity API Gateway forwards."""
    return {"x-user-email": email}


# === Service Fixtures ===


@pytest.fixture
def stripe_mock() -> MagicMock:
    """StripeService double; tests set return values per call."""
    return MagicMock(spec=StripeService)


@pytest.fixture
def notifications(store: EntityStore) -> NotificationService:
    return NotificationService(store)


@pytest.fixture
def payment_service(store: EntityStore, notifications: NotificationService) -> PaymentService:
    return PaymentService(store, notifications)


@pytest.fixture
def refund_service(
    store: EntityStore, stripe_mock: MagicMock, notifications: NotificationService
) -> RefundService:
    return RefundService(store, stripe_mock, notifications)


@pytest.fixture
def payout_service(
    store: EntityStore, stripe_mock: MagicMock, notifications: NotificationService
) -> PayoutService:
    return PayoutService(store, stripe_mock, notifications)


@pytest.fixture
def subscription_service(
    store: EntityStore, stripe_mock: MagicMock, notifications: NotificationService
) -> SubscriptionService:
    return SubscriptionService(store, stripe_mock, notifications)


@pytest.fixture
def identity_service(
    store: EntityStore, stripe_mock: MagicMock, notifications: NotificationService
) -> IdentityService:
    return IdentityService(store, stripe_mock, notifications)


@pytest.fixture
def webhook_handler(
    store: EntityStore,
    payment_service: PaymentService,
    refund_service: RefundService,
    payout_service: PayoutService,
    subscription_service: SubscriptionService,
    identity_service: IdentityService,
) -> WebhookHandler:
    return WebhookHandler(
        store,
        payments=payment_service,
        refunds=refund_service,
        payouts=payout_service,
        subscriptions=subscription_service,
        identity=identity_service,
    )


# === Sample Data Fixtures ===


@pytest.fixture
def sample_listing() -> Listing:
    return Listing(id="LST-001", created_by=HOST_EMAIL, title="Lakeside cabin")


@pytest.fixture
def sample_booking() -> Booking:
    """A paid, confirmed booking of sample_listing."""
    return Booking(
        id="BKG-001",
        listing_id="LST-001",
        guest_email=GUEST_EMAIL,
        payment_reference=PAYMENT_INTENT_ID,
        payment_status=BookingPaymentStatus.PAID,
        status=BookingStatus.CONFIRMED,
    )


@pytest.fixture
def sample_charge() -> Transaction:
    """A completed 100.00 charge for sample_booking."""
    now = datetime.now(timezone.utc)
    return Transaction(
        id="TXN-001",
        user_email=GUEST_EMAIL,
        amount=Decimal("100.00"),
        currency="usd",
        status=TransactionStatus.COMPLETED,
        payment_reference=PAYMENT_INTENT_ID,
        reference_id="BKG-001",
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def sample_payout() -> Payout:
    return Payout(
        id="PAYOUT-001",
        host_identity=HOST_EMAIL,
        booking_id="BKG-001",
        net_amount=Decimal("85.50"),
        status=PayoutStatus.PENDING,
    )


@pytest.fixture
def verified_payout_method() -> PayoutMethod:
    return PayoutMethod(
        id="PM-001",
        host_identity=HOST_EMAIL,
        external_account_id="acct_1HOST",
        status=PayoutMethodStatus.VERIFIED,
        is_default=True,
    )


@pytest.fixture
def guest_user() -> User:
    return User(email=GUEST_EMAIL, full_name="Guest User")


@pytest.fixture
def host_user() -> User:
    return User(email=HOST_EMAIL, full_name="Host User")


@pytest.fixture
def admin_user() -> User:
    return User(email=ADMIN_EMAIL, full_name="Admin User", role=UserRole.ADMIN)
