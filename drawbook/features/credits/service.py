"""
Credit ledger service.

Handles:
- Balance reads (free allowance + purchased credits)
- Creation eligibility
- Atomic credit consumption (free before paid)
- Idempotent credit purchases keyed by payment reference
- Append-only transaction history
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import select, insert, update, func
from sqlalchemy.exc import IntegrityError

from drawbook.core.config import settings
from drawbook.core.database import get_db_session, profiles, credit_transactions
from drawbook.core.errors import EntitlementError, ValidationError
from drawbook.core.logging import log_event
from drawbook.features.profiles.service import get_or_create_profile, get_profile, is_premium, row_to_profile
from drawbook.models.credits import (
    CREDIT_PACKS,
    CanCreateResult,
    CreditBalance,
    CreditPack,
    CreditTransaction,
    UseCreditResult,
)


def free_limit() -> int:
    return settings.FREE_CREATION_LIMIT


def get_pack(pack_name: str) -> CreditPack:
    pack = CREDIT_PACKS.get(pack_name)
    if pack is None:
        raise ValidationError(f"Invalid pack name: {pack_name}")
    return pack


def _balance(free_saves_used: int, credit_balance: int) -> CreditBalance:
    return CreditBalance(
        free_saves_used=free_saves_used,
        free_limit=free_limit(),
        paid_credits=credit_balance,
    )


def get_balance(user_id: str) -> CreditBalance:
    """Current balance. Read-only apart from lazily creating the profile row."""
    profile = get_or_create_profile(user_id)
    return _balance(profile.free_saves_used, profile.credit_balance)


def can_create(user_id: Optional[str]) -> CanCreateResult:
    if not user_id:
        return CanCreateResult(can_create=False, will_use=None, reason="not_authenticated")

    profile = get_or_create_profile(user_id)
    if is_premium(profile):
        return CanCreateResult(can_create=True, will_use="premium", reason="ok")
    balance = _balance(profile.free_saves_used, profile.credit_balance)
    if balance.free_remaining > 0:
        return CanCreateResult(can_create=True, will_use="free", reason="ok")
    if balance.paid_credits > 0:
        return CanCreateResult(can_create=True, will_use="paid", reason="ok")
    return CanCreateResult(can_create=False, will_use=None, reason="no_credits")


def use_credit(user_id: str, creation_id: Optional[str] = None, session=None) -> UseCreditResult:
    """
    Consume one credit for a new creation.

    Both branches are conditional UPDATEs evaluated by the database, so two
    concurrent calls can never both take the last slot. The free branch is
    tried first; the paid branch only matches once the free allowance is
    exhausted. An active premium subscription consumes nothing and is recorded
    as a zero-amount "premium" usage entry, so those saves never widen the
    quota that applies once the subscription lapses. Pass ``session`` to run
    inside a caller's transaction.

    Raises:
        EntitlementError: neither a free slot nor a paid credit is available
    """
    if session is None:
        get_or_create_profile(user_id)
        with get_db_session() as s:
            return use_credit(user_id, creation_id, session=s)

    limit = free_limit()
    now = datetime.now(timezone.utc)

    current = session.execute(select(profiles).where(profiles.c.user_id == user_id)).first()
    if current is not None and is_premium(row_to_profile(current), now):
        return _record_usage(user_id, creation_id, "premium", 0, session, now)

    took_free = session.execute(
        update(profiles)
        .where(profiles.c.user_id == user_id)
        .where(profiles.c.free_saves_used < limit)
        .values(free_saves_used=profiles.c.free_saves_used + 1, updated_at=now)
    ).rowcount == 1

    if took_free:
        source, amount = "free", 0
    else:
        took_paid = session.execute(
            update(profiles)
            .where(profiles.c.user_id == user_id)
            .where(profiles.c.free_saves_used >= limit)
            .where(profiles.c.credit_balance > 0)
            .values(credit_balance=profiles.c.credit_balance - 1, updated_at=now)
        ).rowcount == 1
        if not took_paid:
            log_event("warning", "credits.denied", user_id=user_id, creation_id=creation_id, error_code="no_credits")
            raise EntitlementError("No credits remaining. Purchase a credit pack to keep creating.")
        source, amount = "paid", -1

    return _record_usage(user_id, creation_id, source, amount, session, now)


def _record_usage(user_id: str, creation_id: Optional[str], source: str, amount: int, session, now: datetime) -> UseCreditResult:
    row = session.execute(
        select(profiles.c.free_saves_used, profiles.c.credit_balance).where(profiles.c.user_id == user_id)
    ).one()

    session.execute(
        insert(credit_transactions).values(
            user_id=user_id,
            type="usage",
            amount=amount,
            balance_after=row.credit_balance,
            source=source,
            creation_id=creation_id,
            created_at=now,
        )
    )

    log_event("info", "credits.used", user_id=user_id, creation_id=creation_id, extra={"source": source})
    return UseCreditResult(source=source, free_saves_used=row.free_saves_used, paid_credits=row.credit_balance)


def release_free_slot(user_id: str, session) -> bool:
    """Give back one free slot (creation deleted). Never drops below zero."""
    result = session.execute(
        update(profiles)
        .where(profiles.c.user_id == user_id)
        .where(profiles.c.free_saves_used > 0)
        .values(free_saves_used=profiles.c.free_saves_used - 1, updated_at=datetime.now(timezone.utc))
    )
    return result.rowcount == 1


def add_credits(user_id: str, pack_name: str, payment_ref: str, now: Optional[datetime] = None) -> int:
    """
    Credit a purchased pack. Returns the new paid balance.

    Replays with the same payment reference hit the unique constraint on
    credit_transactions.payment_reference; the whole transaction rolls back
    and the current balance is returned unchanged.
    """
    if not payment_ref:
        raise ValidationError("payment_ref is required")
    pack = get_pack(pack_name)
    get_or_create_profile(user_id)
    now = now or datetime.now(timezone.utc)

    try:
        with get_db_session() as session:
            session.execute(
                update(profiles)
                .where(profiles.c.user_id == user_id)
                .values(credit_balance=profiles.c.credit_balance + pack.credits, updated_at=now)
            )
            new_balance = session.execute(
                select(profiles.c.credit_balance).where(profiles.c.user_id == user_id)
            ).scalar_one()
            session.execute(
                insert(credit_transactions).values(
                    user_id=user_id,
                    type="purchase",
                    amount=pack.credits,
                    balance_after=new_balance,
                    pack_name=pack.name,
                    price_cents=pack.price_cents,
                    payment_reference=payment_ref,
                    expires_at=now + timedelta(days=settings.CREDIT_EXPIRY_DAYS),
                    created_at=now,
                )
            )
    except IntegrityError:
        profile = get_profile(user_id)
        log_event(
            "info",
            "credits.purchase_replayed",
            user_id=user_id,
            extra={"pack_name": pack_name, "payment_reference": payment_ref},
        )
        return profile.credit_balance

    log_event(
        "info",
        "credits.purchased",
        user_id=user_id,
        extra={"pack_name": pack.name, "credits": pack.credits, "balance_after": new_balance},
    )
    return new_balance


def count_paid_usage(user_id: str, session) -> int:
    return session.execute(
        select(func.count())
        .select_from(credit_transactions)
        .where(credit_transactions.c.user_id == user_id)
        .where(credit_transactions.c.type == "usage")
        .where(credit_transactions.c.source == "paid")
    ).scalar_one()


def list_transactions(user_id: str, limit: int = 50) -> List[CreditTransaction]:
    with get_db_session() as session:
        rows = session.execute(
            select(credit_transactions)
            .where(credit_transactions.c.user_id == user_id)
            .order_by(credit_transactions.c.created_at.desc(), credit_transactions.c.id.desc())
            .limit(limit)
        ).all()
    return [
        CreditTransaction(
            id=row.id,
            user_id=row.user_id,
            type=row.type,
            amount=row.amount,
            balance_after=row.balance_after,
            source=row.source,
            pack_name=row.pack_name,
            price_cents=row.price_cents,
            creation_id=row.creation_id,
            payment_reference=row.payment_reference,
            expires_at=row.expires_at,
            created_at=row.created_at,
        )
        for row in rows
    ]
