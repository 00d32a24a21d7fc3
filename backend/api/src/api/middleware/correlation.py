"""Correlation ID middleware for request tracing.

Reuses the X-Correlation-ID request header, or Stripe's Request-Id on
webhook deliveries, and generates one otherwise. The ID is available to
every log record emitted while the request is handled.
"""

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from marketplace.utils.logging import clear_correlation_id, set_correlation_id

CORRELATION_ID_HEADER = "X-Correlation-ID"
STRIPE_REQUEST_ID_HEADER = "Request-Id"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Middleware that manages correlation IDs for request tracing."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        incoming_id = request.headers.get(CORRELATION_ID_HEADER) or request.headers.get(
            STRIPE_REQUEST_ID_HEADER
        )
        correlation_id = set_correlation_id(incoming_id)

        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = correlation_id
            return response
        finally:
            clear_correlation_id()
