"""Caller identity for authenticated endpoints.

Trust Model:
- API Gateway validates the JWT before the request reaches the backend
- After validation, API Gateway injects the x-user-email header (HTTP API
  claim mapping) or exposes the claims in requestContext.authorizer (REST API)
- Backend trusts this identity since it comes from API Gateway, not the client

The caller's role is read from the users table; an unknown email is a plain
user.
"""

from fastapi import Depends, Request

from api.dependencies import get_store
from marketplace.models.enums import UserRole
from marketplace.models.errors import AuthError, ErrorCode
from marketplace.models.user import User
from marketplace.services.entity_store import EntityStore
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)

USER_EMAIL_HEADER = "x-user-email"


def get_caller_email(request: Request) -> str | None:
    """Extract the authenticated caller's email, if any.

    Supports two API Gateway configurations:
    1. HTTP API with JWT authorizer: claim mapped to the x-user-email header
    2. REST API with Cognito User Pools: claims in event.requestContext.authorizer.claims
    """
    email = (request.headers.get(USER_EMAIL_HEADER) or "").strip()
    if email:
        return email.lower()

    # Claims are in event.requestContext.authorizer.claims (via Mangum)
    event = request.scope.get("aws.event", {})
    claims = event.get("requestContext", {}).get("authorizer", {}).get("claims", {})
    email = (claims.get("email") or "").strip()
    return email.lower() or None


async def get_current_user(
    request: Request, store: EntityStore = Depends(get_store)
) -> User:
    """Resolve the authenticated caller.

    Raises:
        AuthError: 401 if no caller identity was forwarded
    """
    email = get_caller_email(request)
    if not email:
        logger.warning("Request to %s without caller identity", request.url.path)
        raise AuthError(ErrorCode.AUTH_REQUIRED)

    user = await store.get(User, email)
    return user or User(email=email, role=UserRole.USER)


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Resolve the caller and require the admin role.

    Raises:
        AuthError: 403 if the caller is not an admin
    """
    if not user.is_admin:
        logger.warning("Admin endpoint denied for %s", user.email)
        raise AuthError(ErrorCode.ADMIN_REQUIRED)
    return user
