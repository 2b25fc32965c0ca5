"""Short-lived signed URLs for object storage.

Every creation asset (original drawing, generated video, page images, ebook
PDF) is served through a URL signed with HMAC-SHA256 over
``bucket/path`` and the expiry timestamp. URLs are minted on every read and
never stored.
"""
from __future__ import annotations

import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from urllib.parse import quote, urlencode

from drawbook.core.config import settings

DRAWINGS_BUCKET = "drawings"
OUTPUTS_BUCKET = "outputs"
PAGE_IMAGES_BUCKET = "page-images"
EBOOKS_BUCKET = "ebooks"


def _signing_key() -> bytes:
    # Unsigned URLs are never issued; dev falls back to a fixed key
    return (settings.STORAGE_SIGNING_KEY or "dev-storage-key").encode()


def _signature(bucket: str, path: str, expires: int) -> str:
    signed_content = f"{bucket}/{path}.{expires}".encode()
    return hmac.new(_signing_key(), signed_content, hashlib.sha256).hexdigest()


def sign_url(bucket: str, path: str, ttl_seconds: Optional[int] = None, now: Optional[datetime] = None) -> Tuple[str, datetime]:
    """Return (url, expires_at) for one stored object."""
    ttl = ttl_seconds if ttl_seconds is not None else settings.SIGNED_URL_TTL_SECONDS
    issued = now or datetime.now(timezone.utc)
    expires_at = issued + timedelta(seconds=ttl)
    expires = int(expires_at.timestamp())
    query = urlencode({"expires": expires, "token": _signature(bucket, path, expires)})
    base = settings.STORAGE_BASE_URL.rstrip("/")
    return f"{base}/{bucket}/{quote(path)}?{query}", expires_at


def verify_signature(bucket: str, path: str, expires: int, token: str, now: Optional[datetime] = None) -> bool:
    current = int((now or datetime.now(timezone.utc)).timestamp())
    if current > expires:
        return False
    return hmac.compare_digest(_signature(bucket, path, expires), token)
