"""
Creations service: saved stories and the quota lock rule.

Lock state is never stored. Every list and detail read ranks the user's
non-deleted creations oldest-first and runs them through
compute_lock_flags, so a delete or a purchase is reflected on the next read.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import select, insert, update

from drawbook.core.config import settings
from drawbook.core.database import get_db_session, creations
from drawbook.core.errors import NotFoundError
from drawbook.core.logging import log_event
from drawbook.features.credits.service import count_paid_usage, release_free_slot, use_credit
from drawbook.features.creations import storage
from drawbook.features.profiles.service import get_or_create_profile, get_profile, is_premium
from drawbook.models.creation import Creation, CreationDetail, NewCreation


def compute_lock_flags(ordered_creations: Sequence, quota: Optional[int], is_premium: bool) -> List[bool]:
    """
    Lock flags for creations ordered oldest-first.

    The first ``min(quota, len)`` are unlocked, the rest locked. Premium or an
    unbounded quota (None) unlocks everything.
    """
    if is_premium or quota is None:
        return [False] * len(ordered_creations)
    allowed = max(0, quota)
    return [rank >= allowed for rank in range(len(ordered_creations))]


def creation_quota(user_id: str, session) -> int:
    """Free allowance plus every creation that was paid for with a credit."""
    return settings.FREE_CREATION_LIMIT + count_paid_usage(user_id, session)


def _ranked_creations(user_id: str, session, now: Optional[datetime] = None) -> List[Tuple[object, bool]]:
    rows = session.execute(
        select(creations)
        .where(creations.c.user_id == user_id)
        .where(creations.c.is_deleted.is_(False))
        .order_by(creations.c.created_at.asc(), creations.c.id.asc())
    ).all()
    premium = is_premium(get_profile(user_id, session=session), now)
    quota = None if premium else creation_quota(user_id, session)
    flags = compute_lock_flags(rows, quota, premium)
    return list(zip(rows, flags))


def _to_creation(row, locked: bool, thumbnail_url: Optional[str] = None) -> Creation:
    return Creation(
        id=row.id,
        title=row.title,
        subject=row.subject,
        artist_name=row.artist_name,
        artist_age=row.artist_age,
        artist_grade=row.artist_grade,
        year=row.year,
        created_at=row.created_at,
        is_locked=locked,
        thumbnail_url=thumbnail_url,
    )


def list_accessible_creations(user_id: str, now: Optional[datetime] = None) -> List[Creation]:
    """All non-deleted creations, newest first, with lock flags and thumbnails."""
    with get_db_session() as session:
        ranked = _ranked_creations(user_id, session, now)

    result = []
    for row, locked in reversed(ranked):
        thumbnail_url = None
        if not locked and row.page_images:
            thumbnail_url, _ = storage.sign_url(storage.PAGE_IMAGES_BUCKET, row.page_images[0], now=now)
        result.append(_to_creation(row, locked, thumbnail_url))
    return result


def get_creation(user_id: str, creation_id: str, now: Optional[datetime] = None) -> CreationDetail:
    """
    Full asset detail for one unlocked creation.

    Missing, foreign, deleted, and locked creations all raise the same
    NotFoundError so the detail path never reveals lock state.
    """
    with get_db_session() as session:
        ranked = _ranked_creations(user_id, session, now)

    match = next(((row, locked) for row, locked in ranked if row.id == creation_id), None)
    if match is None or match[1]:
        raise NotFoundError("Creation not found")
    row = match[0]

    expires_at = None
    original_image_url = video_url = None
    if row.original_image_path:
        original_image_url, expires_at = storage.sign_url(storage.DRAWINGS_BUCKET, row.original_image_path, now=now)
    if row.video_path:
        video_url, expires_at = storage.sign_url(storage.OUTPUTS_BUCKET, row.video_path, now=now)
    page_image_urls = []
    for path in row.page_images or []:
        url, expires_at = storage.sign_url(storage.PAGE_IMAGES_BUCKET, path, now=now)
        page_image_urls.append(url)

    base = _to_creation(row, False, page_image_urls[0] if page_image_urls else None)
    return CreationDetail(
        **base.model_dump(),
        original_image_url=original_image_url,
        video_url=video_url,
        page_image_urls=page_image_urls,
        story_pages=row.story_pages or [],
        urls_expire_at=expires_at,
    )


def save_creation(user_id: str, data: NewCreation) -> Creation:
    """
    Persist a new creation and consume one credit for it.

    Credit consumption and the insert share one transaction: if no credit is
    available the EntitlementError rolls the insert back.
    """
    get_or_create_profile(user_id)
    creation_id = str(uuid.uuid4())
    now = datetime.now(timezone.utc)

    with get_db_session() as session:
        usage = use_credit(user_id, creation_id, session=session)
        session.execute(
            insert(creations).values(
                id=creation_id,
                user_id=user_id,
                title=data.title,
                subject=data.subject,
                artist_name=data.artist_name,
                artist_age=data.artist_age,
                artist_grade=data.artist_grade,
                year=data.year,
                original_image_path=data.original_image_path,
                video_path=data.video_path,
                page_images=list(data.page_images),
                story_pages=list(data.story_pages),
                created_at=now,
                is_deleted=False,
            )
        )

    log_event("info", "creation.saved", user_id=user_id, creation_id=creation_id, extra={"credit_source": usage.source})
    return Creation(
        id=creation_id,
        title=data.title,
        subject=data.subject,
        artist_name=data.artist_name,
        artist_age=data.artist_age,
        artist_grade=data.artist_grade,
        year=data.year,
        created_at=now,
        is_locked=False,
    )


def delete_creation(user_id: str, creation_id: str, now: Optional[datetime] = None) -> None:
    """Soft delete; non-premium users get a free slot back."""
    with get_db_session() as session:
        result = session.execute(
            update(creations)
            .where(creations.c.id == creation_id)
            .where(creations.c.user_id == user_id)
            .where(creations.c.is_deleted.is_(False))
            .values(is_deleted=True, deleted_at=datetime.now(timezone.utc))
        )
        if result.rowcount != 1:
            raise NotFoundError("Creation not found")

        released = False
        if not is_premium(get_profile(user_id, session=session), now):
            released = release_free_slot(user_id, session)

    log_event("info", "creation.deleted", user_id=user_id, creation_id=creation_id, extra={"free_slot_released": released})
