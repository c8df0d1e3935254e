"""Session crediting gate and activity crediting.

A session is paid by one transaction that first flips ``credited_at`` from
NULL to ``now`` with a conditional UPDATE (the compare-and-swap) and only then
adds the award to the balance. A second caller racing on the same session
matches zero rows and gets ``already_credited``; a failed balance write rolls
the whole transaction back, CAS included, so the session can be retried.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from arxledger.clock import as_utc
from arxledger.config import Settings, get_settings
from arxledger.db.models import MiningSession, UserPoints
from arxledger.ledger import balance
from arxledger.ledger.boosts import capped_elapsed, load_boost_snapshot, max_session_award, total_boost
from arxledger.ledger.errors import NotFoundOrForbidden, TransientStoreError, ValidationError

logger = logging.getLogger(__name__)

CREDITED = "credited"
ALREADY_CREDITED = "already_credited"
NO_POINTS = "no_points"

ACTIVITY_CATEGORIES = ("task", "social")


@dataclass
class CreditOutcome:
    status: str
    awarded: int
    session_id: str | None = None
    balance: dict[str, int] = field(default_factory=dict)


def parse_amount(value: Any) -> int:  # noqa: ANN401
    """Coerce a client-supplied amount to a non-negative whole number of points."""
    if isinstance(value, bool) or value is None:
        msg = "amount must be a number"
        raise ValidationError(msg)
    try:
        number = float(value)
    except (TypeError, ValueError):
        msg = "amount must be a number"
        raise ValidationError(msg) from None
    if math.isnan(number) or math.isinf(number):
        msg = "amount must be a finite number"
        raise ValidationError(msg)
    if number < 0:
        msg = "amount must not be negative"
        raise ValidationError(msg)
    return math.floor(number)


async def mark_credited(
    db: AsyncSession,
    session_id: str,
    now: datetime,
    *,
    close_at: datetime | None = None,
    raw_points: int | None = None,
    require_active: bool = False,
) -> bool:
    """The CAS: set credited_at only if it is still NULL. Returns True if this caller won.

    With ``close_at`` the same statement also closes the session and freezes
    ``raw_points``.
    """
    stmt = update(MiningSession).where(
        MiningSession.id == session_id,
        MiningSession.credited_at.is_(None),
    )
    if require_active:
        stmt = stmt.where(MiningSession.is_active.is_(True))
    values: dict[str, Any] = {"credited_at": now}
    if close_at is not None:
        values.update(is_active=False, ended_at=close_at)
    if raw_points is not None:
        values["raw_points"] = raw_points
    result = await db.execute(stmt.values(**values).execution_options(synchronize_session=False))
    return result.rowcount == 1


async def cas_credit(
    db: AsyncSession,
    session_id: str,
    user_id: str,
    award: int,
    now: datetime,
    *,
    close_at: datetime | None = None,
    raw_points: int | None = None,
    require_active: bool = False,
) -> UserPoints | None:
    """CAS then credit, inside the caller's transaction. None means the CAS was lost.

    The caller commits on success and rolls back on any exception.
    """
    won = await mark_credited(
        db,
        session_id,
        now,
        close_at=close_at,
        raw_points=raw_points,
        require_active=require_active,
    )
    if not won:
        return None
    return await balance.increment_points(db, user_id, "mining", award, now)


async def credit_session(
    db: AsyncSession,
    session_id: str,
    user_id: str,
    claimed_amount: Any,  # noqa: ANN401
    now: datetime,
    settings: Settings | None = None,
) -> CreditOutcome:
    """Pay one mining session at most once, bounded by elapsed time and boosts."""
    s = settings or get_settings()
    claimed = parse_amount(claimed_amount)

    session = (
        await db.execute(
            select(MiningSession)
            .where(MiningSession.id == session_id, MiningSession.user_id == user_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if session is None:
        logger.warning("Session %s not found for user %s", session_id, user_id)
        raise NotFoundOrForbidden("session not found or access denied")

    if session.credited_at is not None:
        logger.info("Session %s already credited at %s", session_id, session.credited_at)
        return await _zero_outcome(db, ALREADY_CREDITED, session_id, user_id)

    started_at = as_utc(session.started_at)
    end = as_utc(session.ended_at) if (not session.is_active and session.ended_at) else now
    boosts = await load_boost_snapshot(db, user_id, now)
    boost = total_boost(boosts, s)
    max_allowed = max_session_award(capped_elapsed(started_at, end, s), boost, s)

    award = min(claimed, max_allowed)
    frozen = session.raw_points if (not session.is_active and session.raw_points > 0) else None
    if frozen is not None:
        award = min(award, frozen)

    if award <= 0:
        logger.info("No points to award for session %s (max_allowed=%d)", session_id, max_allowed)
        return await _zero_outcome(db, NO_POINTS, session_id, user_id)

    # an overdue session closes where the sweeper would have closed it
    close_at = min(now, started_at + timedelta(hours=s.max_session_hours)) if session.is_active else None
    try:
        points = await cas_credit(
            db,
            session_id,
            user_id,
            award,
            now,
            close_at=close_at,
            raw_points=award if frozen is None else None,
        )
        if points is None:
            await db.rollback()
            logger.info("Session %s was credited by another request", session_id)
            return await _zero_outcome(db, ALREADY_CREDITED, session_id, user_id)
        snapshot = balance.subtotals(points)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Failed to credit session %s for user %s", session_id, user_id)
        raise TransientStoreError(f"session {session_id}: balance write failed") from exc

    logger.info(
        "Awarded %d mining points to %s for session %s (claimed=%d, max=%d, boost=%d%%)",
        award, user_id, session_id, claimed, max_allowed, boost,
    )
    return CreditOutcome(status=CREDITED, awarded=award, session_id=session_id, balance=snapshot)


async def credit_activity(
    db: AsyncSession,
    user_id: str,
    category: str,
    amount: Any,  # noqa: ANN401
    now: datetime,
    settings: Settings | None = None,
) -> CreditOutcome:
    """Credit a task or social award, clamped to the per-call ceiling."""
    s = settings or get_settings()
    if category not in ACTIVITY_CATEGORIES:
        msg = f"invalid point type: {category}"
        raise ValidationError(msg)
    safe_amount = min(parse_amount(amount), s.max_credit_amount)
    if safe_amount <= 0:
        msg = "invalid amount"
        raise ValidationError(msg)

    try:
        points = await balance.increment_points(db, user_id, category, safe_amount, now)
        snapshot = balance.subtotals(points)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Failed to credit %s points for user %s", category, user_id)
        raise TransientStoreError(f"user {user_id}: balance write failed") from exc

    logger.info("Awarded %d %s points to %s", safe_amount, category, user_id)
    return CreditOutcome(status=CREDITED, awarded=safe_amount, balance=snapshot)


async def _zero_outcome(db: AsyncSession, status: str, session_id: str, user_id: str) -> CreditOutcome:
    points = await balance.get_points(db, user_id)
    return CreditOutcome(status=status, awarded=0, session_id=session_id, balance=balance.subtotals(points))
