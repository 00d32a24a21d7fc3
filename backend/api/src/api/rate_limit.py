"""Per-endpoint rate limiting dependency.

Authenticated callers are keyed by email and get the policy's
``authenticated_max_requests``; anonymous callers are keyed by client IP.
Allowed responses carry X-RateLimit-* headers; denials raise
RateLimitExceeded, answered 429 by api.exceptions.
"""

from datetime import UTC, datetime

from fastapi import Depends, Request, Response

from api.dependencies import get_rate_limiter
from api.security import get_caller_email
from marketplace.config import RATE_LIMITS
from marketplace.services.rate_limiter import RateLimiter, RateLimitResult


class RateLimitExceeded(Exception):
    """Raised when a caller exceeded the endpoint's request budget."""

    def __init__(self, result: RateLimitResult) -> None:
        super().__init__("Rate limit exceeded")
        self.result = result


def client_identifier(request: Request) -> str:
    """Rate limit key for an anonymous caller."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        ip = request.headers.get("x-real-ip") or "unknown"
    return f"ip:{ip}"


def format_reset_time(reset_time_ms: int) -> str:
    """ISO-8601 (UTC, millisecond precision) form of an epoch-ms timestamp."""
    reset = datetime.fromtimestamp(reset_time_ms / 1000, UTC)
    return reset.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": format_reset_time(result.reset_time),
    }
    if result.retry_after is not None:
        headers["Retry-After"] = str(result.retry_after)
    return headers


class RateLimit:
    """Dependency enforcing the RATE_LIMITS policy named ``policy``."""

    def __init__(self, policy: str = "default") -> None:
        self.policy = RATE_LIMITS[policy]

    async def __call__(
        self,
        request: Request,
        response: Response,
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> RateLimitResult:
        email = get_caller_email(request)
        if email:
            identifier, max_requests = email, self.policy.authenticated_max_requests
        else:
            identifier, max_requests = client_identifier(request), self.policy.max_requests

        result = await limiter.check_limit(identifier, max_requests, self.policy.window_ms)
        if not result.allowed:
            raise RateLimitExceeded(result)

        response.headers.update(rate_limit_headers(result))
        return result
