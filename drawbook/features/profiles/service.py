"""
Profile domain service.
- get_or_create_profile(user_id)
- get_profile(user_id)
- is_premium(profile)
"""

from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import select, insert
from sqlalchemy.exc import IntegrityError

from drawbook.core.database import get_db_session, profiles
from drawbook.models.profile import Profile


def _normalize_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back out
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def row_to_profile(row) -> Profile:
    return Profile(
        user_id=row.user_id,
        email=row.email,
        display_name=row.display_name,
        free_saves_used=row.free_saves_used,
        credit_balance=row.credit_balance,
        subscription_tier=row.subscription_tier,
        subscription_expires_at=_aware(row.subscription_expires_at),
    )


def get_profile(user_id: str, session=None) -> Optional[Profile]:
    if session is not None:
        row = session.execute(select(profiles).where(profiles.c.user_id == user_id)).first()
        return row_to_profile(row) if row else None
    with get_db_session() as s:
        return get_profile(user_id, session=s)


def get_or_create_profile(user_id: str, email: Optional[str] = None) -> Profile:
    existing = get_profile(user_id)
    if existing:
        return existing

    try:
        with get_db_session() as session:
            session.execute(
                insert(profiles).values(
                    user_id=user_id,
                    email=email,
                    free_saves_used=0,
                    credit_balance=0,
                    subscription_tier="free",
                    created_at=datetime.now(timezone.utc),
                )
            )
    except IntegrityError:
        # Created concurrently by another request
        pass
    return get_profile(user_id)


def is_premium(profile: Optional[Profile], now: Optional[datetime] = None) -> bool:
    """Premium only while the subscription is tier 'premium' and unexpired."""
    if profile is None or profile.subscription_tier != "premium":
        return False
    if profile.subscription_expires_at is None:
        return False
    return _aware(profile.subscription_expires_at) > _normalize_now(now)
