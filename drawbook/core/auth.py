"""
Auth utilities for the Drawbook API.

Validates HS256 access tokens issued by the auth provider and extracts the
user id from the 'sub' claim. Outside production the X-User-Id header is
accepted as well so tests and local tools can act as a user.
"""
from fastapi import Header, Request
from typing import Optional
import jwt
import logging

from drawbook.core.config import settings, is_production
from drawbook.core.errors import AuthenticationError

logger = logging.getLogger("drawbook")


def verify_access_token(token: str) -> str:
    """
    Verify a bearer token and return its subject.

    Raises:
        AuthenticationError: Invalid, expired, or subject-less token
    """
    if not settings.JWT_SECRET:
        raise AuthenticationError("Token verification is not configured")

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=["HS256"],
            audience=settings.JWT_AUDIENCE or None,
            options={"verify_exp": True, "verify_aud": bool(settings.JWT_AUDIENCE)},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise AuthenticationError("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Token has no subject")
    return user_id


def _header_fallback_allowed() -> bool:
    return settings.ALLOW_USER_ID_HEADER and not is_production()


async def get_optional_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Local/test user ID"),
) -> Optional[str]:
    """Resolve the caller's user id, or None when the request is anonymous."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        # An invalid token is an error, never a fall-through to X-User-Id
        return verify_access_token(auth_header[7:])

    if x_user_id and _header_fallback_allowed():
        return x_user_id

    return None


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Local/test user ID"),
) -> str:
    """
    Extract current user ID from request context.

    Priority:
    1. Bearer JWT from Authorization header
    2. X-User-Id header (non-production only)
    3. Raise AuthenticationError (401)
    """
    user_id = await get_optional_user_id(request, x_user_id)
    if not user_id:
        raise AuthenticationError("Missing Authorization (Bearer JWT) or X-User-Id header")
    return user_id
