"""API-specific request/response models.

This package contains Pydantic models specific to the REST API layer.
These models define request bodies and response schemas for endpoints.

Domain models (Transaction, Payout, User, etc.) are in marketplace.models
and should be reused here where appropriate.

Modules:
- common: Shared error models and validation error formatting
- refunds: Refund request/response models
- payouts: Payout request/response models
- subscriptions: Subscription cancellation response
- identity: Identity verification session response
- webhooks: Stripe webhook acknowledgment models
"""

__all__: list[str] = []
