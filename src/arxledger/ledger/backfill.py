"""Orphan backfill: pays sessions that were closed but never credited."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from arxledger.config import Settings, get_settings
from arxledger.db.models import MiningSession
from arxledger.ledger.crediting import cas_credit
from arxledger.ledger.sweeper import clamp_batch_size

logger = logging.getLogger(__name__)


@dataclass
class BackfillItem:
    session_id: str
    user_id: str
    status: str  # credited | skipped | failed
    awarded: int = 0
    error: str | None = None


@dataclass
class BackfillReport:
    processed: int = 0
    credited: int = 0
    skipped: int = 0
    failed: int = 0
    total_points: int = 0
    dry_run: bool = False
    results: list[BackfillItem] = field(default_factory=list)


async def backfill_orphans(
    db: AsyncSession,
    now: datetime,
    limit: int | None = None,
    dry_run: bool = False,
    settings: Settings | None = None,
) -> BackfillReport:
    """Credit closed sessions with frozen points and no credited_at, oldest first.

    Safe to run repeatedly and alongside live crediting: every payout goes
    through the credited_at CAS.
    """
    s = settings or get_settings()
    batch = clamp_batch_size(limit, s)

    orphans = (
        await db.execute(
            select(MiningSession.id, MiningSession.user_id, MiningSession.raw_points)
            .where(
                MiningSession.is_active.is_(False),
                MiningSession.credited_at.is_(None),
                MiningSession.raw_points > 0,
            )
            .order_by(MiningSession.ended_at.asc())
            .limit(batch)
        )
    ).all()

    report = BackfillReport(dry_run=dry_run)
    for row in orphans:
        report.processed += 1
        award = min(int(row.raw_points), s.max_session_points)

        if dry_run:
            report.skipped += 1
            report.total_points += award
            report.results.append(BackfillItem(row.id, row.user_id, "skipped", award))
            continue

        try:
            points = await cas_credit(db, row.id, row.user_id, award, now)
            if points is None:
                await db.rollback()
                report.skipped += 1
                report.results.append(BackfillItem(row.id, row.user_id, "skipped"))
                continue
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.exception("Failed to backfill session %s for user %s", row.id, row.user_id)
            report.failed += 1
            report.results.append(BackfillItem(row.id, row.user_id, "failed", error=str(exc)))
            continue

        report.credited += 1
        report.total_points += award
        report.results.append(BackfillItem(row.id, row.user_id, "credited", award))

    logger.info(
        "Orphan backfill: processed=%d credited=%d skipped=%d failed=%d points=%d",
        report.processed, report.credited, report.skipped, report.failed, report.total_points,
    )
    return report
