"""Runtime configuration for the marketplace backend.

Values come from environment variables. Secrets (Stripe keys) are resolved
by StripeService from the environment first and from SSM Parameter Store
otherwise, under the path returned by ``ssm_parameter_path``.

Environment variables:
    ENVIRONMENT: Deployment environment name (dev, prod). Default: dev
    DYNAMODB_TABLE_PREFIX: Table name prefix. Default: marketplace-{ENVIRONMENT}
    STRIPE_SECRET_KEY / STRIPE_WEBHOOK_SECRET: Optional SSM overrides
    RATE_LIMIT_BACKEND: "memory" (default) or "dynamodb"
    LOG_LEVEL: Root log level. Default: INFO
    CORS_ORIGINS: Comma separated list of allowed origins
"""

import os
from decimal import Decimal
from typing import NamedTuple


def get_environment() -> str:
    """Get the deployment environment name."""
    return os.environ.get("ENVIRONMENT", "dev")


def ssm_parameter_path(name: str) -> str:
    """Build the SSM parameter path for a secret.

    Args:
        name: Relative parameter name (e.g. "stripe/secret_key")

    Returns:
        Full path like /marketplace/dev/stripe/secret_key
    """
    return f"/marketplace/{get_environment()}/{name}"


def get_cors_origins() -> list[str]:
    """Get allowed CORS origins."""
    raw = os.environ.get("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


# === Request size limits (bytes) ===

MAX_REQUEST_SIZE: dict[str, int] = {
    "default": 1 * 1024 * 1024,
    "file_upload": 10 * 1024 * 1024,
    "image": 10 * 1024 * 1024,
    "large_payload": 5 * 1024 * 1024,
}


# === Rate limiting ===


class RateLimitPolicy(NamedTuple):
    """Sliding window limits for one endpoint family."""

    max_requests: int
    window_ms: int
    authenticated_max_requests: int


RATE_LIMITS: dict[str, RateLimitPolicy] = {
    "default": RateLimitPolicy(max_requests=100, window_ms=60_000, authenticated_max_requests=200),
    "refund": RateLimitPolicy(max_requests=5, window_ms=60_000, authenticated_max_requests=10),
    "payout": RateLimitPolicy(max_requests=5, window_ms=60_000, authenticated_max_requests=20),
    "subscription": RateLimitPolicy(
        max_requests=5, window_ms=60_000, authenticated_max_requests=10
    ),
    "identity": RateLimitPolicy(max_requests=3, window_ms=3_600_000, authenticated_max_requests=5),
}

# Identifiers whose newest request is older than this are purged
RATE_LIMIT_RETENTION_MS = 60 * 60 * 1000
RATE_LIMIT_CLEANUP_INTERVAL_SECONDS = 10 * 60


def get_rate_limit_backend() -> str:
    """Get the configured rate limit store backend ("memory" or "dynamodb")."""
    return os.environ.get("RATE_LIMIT_BACKEND", "memory").lower()


# === Webhooks ===

# Maximum age of a Stripe-Signature timestamp
WEBHOOK_TOLERANCE_SECONDS = 300

# A "processing" ledger entry older than this may be re-claimed by a redelivery
WEBHOOK_PROCESSING_LEASE_SECONDS = 300

# Honeypot timing threshold for form submissions
MIN_FORM_FILL_MS = 3000

# === Payments ===

DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "usd")

# Share of a sale kept by the platform; the rest is paid out to the seller
PLATFORM_FEE_RATE = Decimal(os.environ.get("PLATFORM_FEE_RATE", "0.10"))

# Base URL of the web app, used for Stripe return URLs
APP_URL = os.environ.get("APP_URL", "http://localhost:3000")

# A pending identity session younger than this is reused instead of recreated
IDENTITY_SESSION_REUSE_HOURS = 24
