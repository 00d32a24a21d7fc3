"""Notification model (write only)."""

from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel, Field

from .enums import NotificationType


class Notification(BaseModel):
    """A message shown to a user in the app."""

    TABLE: ClassVar[str] = "notifications"
    KEY: ClassVar[str] = "id"

    id: str
    user_email: str
    type: NotificationType
    title: str
    message: str
    reference_id: str | None = Field(
        default=None, description="Entity the notification refers to"
    )
    read: bool = False
    created_at: datetime
