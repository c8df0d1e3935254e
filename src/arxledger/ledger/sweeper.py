"""Stale session sweeper: closes sessions the client never reported.

Sessions older than the session cap are closed at ``started_at + cap`` and
paid through the same CAS-then-credit path as a client report, so a client
that reports late simply loses the race and gets ``already_credited``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from arxledger.clock import as_utc
from arxledger.config import Settings, get_settings
from arxledger.db.models import MiningSession
from arxledger.ledger.boosts import load_boost_snapshot, max_session_award, total_boost
from arxledger.ledger.crediting import cas_credit

logger = logging.getLogger(__name__)


@dataclass
class SweepItem:
    session_id: str
    user_id: str
    status: str  # credited | skipped | failed | dry_run
    awarded: int = 0
    boost: int = 0
    error: str | None = None


@dataclass
class SweepReport:
    processed: int = 0
    credited: int = 0
    total_points: int = 0
    dry_run: bool = False
    results: list[SweepItem] = field(default_factory=list)


def clamp_batch_size(batch_size: int | None, settings: Settings) -> int:
    if batch_size is None:
        return settings.default_batch_size
    return max(1, min(int(batch_size), settings.max_batch_size))


async def sweep_stale_sessions(
    db: AsyncSession,
    now: datetime,
    batch_size: int | None = None,
    dry_run: bool = False,
    settings: Settings | None = None,
) -> SweepReport:
    """Close and credit active sessions that outlived the session cap."""
    s = settings or get_settings()
    limit = clamp_batch_size(batch_size, s)
    cap = timedelta(hours=s.max_session_hours)

    stale = (
        await db.execute(
            select(MiningSession.id, MiningSession.user_id, MiningSession.started_at)
            .where(MiningSession.is_active.is_(True), MiningSession.started_at < now - cap)
            .order_by(MiningSession.started_at.asc())
            .limit(limit)
        )
    ).all()

    report = SweepReport(dry_run=dry_run)
    for row in stale:
        report.processed += 1
        boosts = await load_boost_snapshot(db, row.user_id, now)
        boost = total_boost(boosts, s)
        award = max_session_award(cap, boost, s)
        closed_at = as_utc(row.started_at) + cap

        if dry_run:
            report.results.append(SweepItem(row.id, row.user_id, "dry_run", award, boost))
            report.total_points += award
            continue

        try:
            points = await cas_credit(
                db,
                row.id,
                row.user_id,
                award,
                now,
                close_at=closed_at,
                raw_points=award,
                require_active=True,
            )
            if points is None:
                await db.rollback()
                report.results.append(SweepItem(row.id, row.user_id, "skipped", 0, boost))
                continue
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.exception("Failed to sweep session %s for user %s", row.id, row.user_id)
            report.results.append(SweepItem(row.id, row.user_id, "failed", 0, boost, error=str(exc)))
            continue

        report.credited += 1
        report.total_points += award
        report.results.append(SweepItem(row.id, row.user_id, "credited", award, boost))

    logger.info(
        "Stale session sweep: processed=%d credited=%d points=%d dry_run=%s",
        report.processed, report.credited, report.total_points, dry_run,
    )
    return report
