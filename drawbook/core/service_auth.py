"""
Shared-secret authentication for service-to-service callbacks.

The ebook generation pipeline reports completion with an X-Service-Key
header. The key is compared in constant time and identified in logs only by
a short hash.
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass

from fastapi import Request

from drawbook.core.config import settings
from drawbook.core.errors import AuthenticationError, ForbiddenError

logger = logging.getLogger("drawbook")


@dataclass
class ServiceActor:
    """Represents an authenticated internal service."""
    actor_id: str  # "service:<hash>"
    auth_mechanism: str = "x_service_key"


def require_service_key(request: Request) -> ServiceActor:
    expected_key = settings.SERVICE_API_KEY
    if not expected_key:
        raise ForbiddenError("Service callbacks are disabled")

    header_key = request.headers.get("X-Service-Key", "").strip()
    if not header_key:
        raise AuthenticationError("Missing X-Service-Key header")
    if not hmac.compare_digest(header_key, expected_key):
        logger.warning("service_auth.rejected", extra={"path": request.url.path})
        raise ForbiddenError("Invalid service key")

    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return ServiceActor(actor_id=f"service:{key_hash}")
