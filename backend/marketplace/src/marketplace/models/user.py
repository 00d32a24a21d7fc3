"""User model holding role, subscription and identity verification state."""

from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel, Field

from .enums import IdentityVerificationStatus, SubscriptionStatus, UserRole


class User(BaseModel):
    """A marketplace user keyed by email."""

    TABLE: ClassVar[str] = "users"
    KEY: ClassVar[str] = "email"

    email: str
    full_name: str | None = None
    role: UserRole = Field(default=UserRole.USER)

    # Mirrors Stripe's subscription status string verbatim
    subscription_status: str = Field(default=SubscriptionStatus.NONE.value)
    subscription_id: str | None = Field(default=None, description="Stripe subscription ID")
    subscription_trial_end: datetime | None = None
    subscription_current_period_end: datetime | None = None
    subscription_event_at: int | None = Field(
        default=None,
        description="Created timestamp of the last applied subscription event",
    )

    identity_verification_status: IdentityVerificationStatus = Field(
        default=IdentityVerificationStatus.NONE
    )
    identity_verification_session_id: str | None = None
    identity_verification_started: datetime | None = None
    identity_verification_error: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
