"""API routes package.

This package contains FastAPI routers for all REST API endpoints.
Routers are organized by domain:

- webhooks: Stripe webhook ingestion
- refunds: User-initiated refunds
- payouts: Admin-triggered host payouts
- subscriptions: Subscription cancellation
- identity: Identity verification sessions

All routers are registered in main.py with /api prefix.
"""

from api.routes.identity import router as identity_router
from api.routes.payouts import router as payouts_router
from api.routes.refunds import router as refunds_router
from api.routes.subscriptions import router as subscriptions_router
from api.routes.webhooks import router as webhooks_router

__all__ = [
    "identity_router",
    "payouts_router",
    "refunds_router",
    "subscriptions_router",
    "webhooks_router",
]
