"""Mining session lifecycle: start and lookup."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from arxledger.db.models import MiningSession

logger = logging.getLogger(__name__)


async def get_active_session(db: AsyncSession, user_id: str) -> MiningSession | None:
    """Return the user's open session, if any."""
    result = await db.execute(
        select(MiningSession)
        .where(MiningSession.user_id == user_id, MiningSession.is_active.is_(True))
        .order_by(MiningSession.started_at.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def start_session(db: AsyncSession, user_id: str, now: datetime) -> tuple[MiningSession, bool]:
    """Open a mining session. Returns (session, created).

    A user has at most one active session; starting again returns the open one.
    """
    existing = await get_active_session(db, user_id)
    if existing is not None:
        return existing, False

    session = MiningSession(user_id=user_id, started_at=now, is_active=True, raw_points=0)
    db.add(session)
    try:
        await db.commit()
    except IntegrityError:
        # Lost a race with a concurrent start; the partial unique index kept one.
        await db.rollback()
        existing = await get_active_session(db, user_id)
        if existing is None:
            raise
        return existing, False
    await db.refresh(session)
    logger.info("Started mining session %s for user %s", session.id, user_id)
    return session, True
