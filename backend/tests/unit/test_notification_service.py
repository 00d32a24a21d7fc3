"""Unit tests for fire-and-forget notifications."""

from typing import Any, Callable
from unittest.mock import AsyncMock

import pytest

from marketplace.models import NotificationType
from marketplace.services.entity_store import EntityStore
from marketplace.services.notification_service import NotificationService


class TestNotificationService:
    @pytest.mark.asyncio
    async def test_notification_is_written_in_background(
        self,
        notifications: NotificationService,
        notifications_for: Callable[[str], list[dict[str, Any]]],
    ) -> None:
        notifications.notify(
            "guest@example.com",
            NotificationType.PAYMENT,
            "Payment Successful",
            "Your payment of $10.00 was received.",
            reference_id="TXN-1",
        )
        assert notifications.pending == 1

        await notifications.drain()

        stored = notifications_for("guest@example.com")
        assert notifications.pending == 0
        assert len(stored) == 1
        assert stored[0]["type"] == "payment"
        assert stored[0]["title"] == "Payment Successful"
        assert stored[0]["reference_id"] == "TXN-1"
        assert stored[0]["read"] is False
        assert stored[0]["id"].startswith("NTF-")

    @pytest.mark.asyncio
    async def test_write_failure_is_logged_not_raised(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        failing_store = AsyncMock(spec=EntityStore)
        failing_store.put.side_effect = RuntimeError("table unavailable")
        notifications = NotificationService(failing_store)

        notifications.notify("guest@example.com", NotificationType.PAYOUT, "Payout", "Sent")
        await notifications.drain()

        assert "Failed to send payout notification" in caplog.text
