"""Fire-and-forget user notifications.

Notifications are a best-effort side effect of reconciliation: they are
written by a background task so a slow or failing write never blocks or
fails the primary operation. Failures are logged and dropped.
"""

import asyncio
import uuid
from datetime import UTC, datetime

from marketplace.models.enums import NotificationType
from marketplace.models.notification import Notification
from marketplace.services.entity_store import EntityStore
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)


class NotificationService:
    """Dispatches notifications as detached asyncio tasks."""

    def __init__(self, store: EntityStore) -> None:
        self._store = store
        self._pending: set[asyncio.Task[None]] = set()

    def notify(
        self,
        user_email: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        reference_id: str | None = None,
    ) -> None:
        """Schedule a notification write and return immediately.

        Args:
            user_email: Recipient
            notification_type: Notification category
            title: Short title
            message: Body text
            reference_id: Entity the notification refers to
        """
        notification = Notification(
            id=f"NTF-{uuid.uuid4().hex}",
            user_email=user_email,
            type=notification_type,
            title=title,
            message=message,
            reference_id=reference_id,
            created_at=datetime.now(UTC),
        )
        task = asyncio.create_task(self._deliver(notification))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, notification: Notification) -> None:
        try:
            await self._store.put(notification)
            logger.debug(
                "Notification %s sent to %s", notification.type.value, notification.user_email
            )
        except Exception:
            logger.exception(
                "Failed to send %s notification (reference=%s)",
                notification.type.value,
                notification.reference_id,
            )

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for all scheduled notifications to finish (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
