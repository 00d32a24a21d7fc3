"""FastAPI application for the marketplace payments REST API.

This package provides REST endpoints for:
- Health checks
- Stripe webhook ingestion (payments, refunds, payouts, connected accounts,
  identity verification, subscriptions)
- Refunds, host payouts, subscription cancellation and identity verification

The same app runs locally under uvicorn and on AWS Lambda behind API Gateway
through Mangum.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum

from api.dependencies import get_notification_service, get_rate_limiter
from api.exceptions import register_exception_handlers
from api.middleware.correlation import CorrelationIdMiddleware
from api.routes import (
    identity_router,
    payouts_router,
    refunds_router,
    subscriptions_router,
    webhooks_router,
)
from marketplace.config import get_cors_origins
from marketplace.utils.logging import configure_logging, get_logger

configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the rate limit cleanup task; flush pending notifications on shutdown."""
    limiter = get_rate_limiter()
    limiter.start_cleanup()
    try:
        yield
    finally:
        await limiter.stop_cleanup()
        await get_notification_service().drain()


app = FastAPI(
    title="Marketplace Payments API",
    description="REST API for marketplace payments, refunds, payouts and verification",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[
        "X-Correlation-ID",
        "X-RateLimit-Limit",
        "X-RateLimit-Remaining",
        "X-RateLimit-Reset",
        "Retry-After",
    ],
)
app.add_middleware(CorrelationIdMiddleware)

# Register exception handlers for consistent error responses
register_exception_handlers(app)

# Include routers under /api prefix
# This matches CloudFront routing: /api/* → API Gateway
app.include_router(webhooks_router, prefix="/api")
app.include_router(refunds_router, prefix="/api")
app.include_router(payouts_router, prefix="/api")
app.include_router(subscriptions_router, prefix="/api")
app.include_router(identity_router, prefix="/api")


@app.get("/api/ping")
async def ping() -> dict[str, Any]:
    """Root health check endpoint at /api/ping."""
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "service": "marketplace-api",
    }


# Lambda handler - Mangum wraps FastAPI for AWS Lambda + API Gateway
handler = Mangum(app, lifespan="off")


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = True) -> None:
    """Run the FastAPI server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to listen on (default: 8080)
        reload: Enable hot reload for development (default: True)
    """
    import uvicorn

    if reload:
        # Use string reference for reload mode (uvicorn requirement)
        uvicorn.run(
            "api.main:app",
            host=host,
            port=port,
            reload=True,
            reload_dirs=["api/src", "marketplace/src"],
        )
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
