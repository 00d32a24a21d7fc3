"""Unit tests for EntityStore conditional writes against mocked DynamoDB."""

from decimal import Decimal
from typing import Any, Callable

import pytest

from marketplace.models import Transaction, TransactionStatus
from marketplace.services.entity_store import EntityStore


@pytest.fixture
def charge() -> Transaction:
    return Transaction(
        id="TXN-STORE",
        user_email="guest@example.com",
        amount=Decimal("40.00"),
        status=TransactionStatus.PENDING,
        payment_reference="pi_store",
    )


class TestCreateAndGet:
    @pytest.mark.asyncio
    async def test_create_is_conditional_on_key(
        self, store: EntityStore, charge: Transaction
    ) -> None:
        assert await store.create(charge) is True
        assert await store.create(charge.model_copy(update={"amount": Decimal("1")})) is False

        stored = await store.get(Transaction, "TXN-STORE")
        assert stored.amount == Decimal("40.00")
        assert stored.status == TransactionStatus.PENDING

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store: EntityStore) -> None:
        assert await store.get(Transaction, "TXN-NOPE") is None

    @pytest.mark.asyncio
    async def test_find_one_uses_index(self, store: EntityStore, charge: Transaction) -> None:
        await store.create(charge)

        found = await store.find_one(Transaction, "payment_reference", "pi_store")

        assert found.id == "TXN-STORE"
        assert await store.find_one(Transaction, "payment_reference", "pi_other") is None


class TestConditionalUpdate:
    """Tests for expected / lower_than conditions."""

    @pytest.mark.asyncio
    async def test_update_with_matching_expectation(
        self, store: EntityStore, seed: Callable[..., None], charge: Transaction
    ) -> None:
        seed(charge)

        updated = await store.update(
            Transaction,
            charge.id,
            {"status": TransactionStatus.COMPLETED},
            expected={"status": TransactionStatus.PENDING},
        )

        assert updated.status == TransactionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_update_with_stale_expectation_is_skipped(
        self, store: EntityStore, seed: Callable[..., None], charge: Transaction
    ) -> None:
        seed(charge.model_copy(update={"status": TransactionStatus.REFUNDED}))

        updated = await store.update(
            Transaction,
            charge.id,
            {"status": TransactionStatus.FAILED},
            expected={"status": TransactionStatus.PENDING},
        )

        assert updated is None
        assert (await store.get(Transaction, charge.id)).status == TransactionStatus.REFUNDED

    @pytest.mark.asyncio
    async def test_update_of_missing_record_is_skipped(self, store: EntityStore) -> None:
        assert await store.update(Transaction, "TXN-NOPE", {"error_message": "x"}) is None

    @pytest.mark.asyncio
    async def test_expected_collection_and_absent_attribute(
        self, store: EntityStore, seed: Callable[..., None], charge: Transaction
    ) -> None:
        seed(charge)

        # refund_amount is absent, so expecting None matches
        updated = await store.update(
            Transaction,
            charge.id,
            {"refund_amount": Decimal("10.00")},
            expected={
                "status": (TransactionStatus.PENDING, TransactionStatus.COMPLETED),
                "refund_amount": None,
            },
        )

        assert updated.refund_amount == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_none_change_removes_attribute(
        self, store: EntityStore, seed: Callable[..., None], charge: Transaction
    ) -> None:
        seed(charge.model_copy(update={"error_message": "declined"}))

        updated = await store.update(Transaction, charge.id, {"error_message": None})

        assert updated.error_message is None

    @pytest.mark.asyncio
    async def test_lower_than_only_moves_forward(
        self,
        store: EntityStore,
        seed: Callable[..., None],
        fetch: Callable[[type, str], Any],
        charge: Transaction,
    ) -> None:
        seed(charge.model_copy(update={"refund_amount": Decimal("20.00")}))

        backwards = await store.update(
            Transaction,
            charge.id,
            {"refund_amount": Decimal("10.00")},
            lower_than={"refund_amount": Decimal("10.00")},
        )
        forwards = await store.update(
            Transaction,
            charge.id,
            {"refund_amount": Decimal("30.00")},
            lower_than={"refund_amount": Decimal("30.00")},
        )

        assert backwards is None
        assert forwards.refund_amount == Decimal("30.00")
        assert fetch(Transaction, charge.id).refund_amount == Decimal("30.00")
