"""arq worker for the ledger's recovery jobs.

Runs as a separate process. The stale session sweep closes sessions whose
client never reported back; the orphan backfill pays sessions that were
closed but never credited. Ended arena battles are settled on their own
schedule.
"""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from arxledger.arena.settlement import settle_ended_battles
from arxledger.clock import utcnow
from arxledger.config import get_settings
from arxledger.database import close_db, get_session_factory, init_db
from arxledger.ledger.backfill import backfill_orphans
from arxledger.ledger.sweeper import sweep_stale_sessions

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize the database engine on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)
    ctx["settings"] = settings
    logger.info("Ledger worker started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Dispose of the database engine."""
    await close_db()
    logger.info("Ledger worker shut down")


async def sweep_stale_sessions_job(ctx: dict) -> int:  # type: ignore[type-arg]
    """Close and credit sessions that ran past the cap (every 15 minutes)."""
    async with get_session_factory()() as db:
        report = await sweep_stale_sessions(db, utcnow(), settings=ctx.get("settings"))
    failed = sum(1 for r in report.results if r.status == "failed")
    if report.processed:
        logger.info(
            "Swept %d stale sessions: credited=%d failed=%d points=%d",
            report.processed, report.credited, failed, report.total_points,
        )
    return report.credited


async def backfill_orphans_job(ctx: dict) -> int:  # type: ignore[type-arg]
    """Credit closed sessions that were never paid (hourly)."""
    async with get_session_factory()() as db:
        report = await backfill_orphans(db, utcnow(), settings=ctx.get("settings"))
    if report.processed:
        logger.info(
            "Backfilled %d orphan sessions: credited=%d skipped=%d failed=%d points=%d",
            report.processed, report.credited, report.skipped, report.failed, report.total_points,
        )
    return report.credited


async def settle_ended_battles_job(ctx: dict) -> int:  # type: ignore[type-arg]
    """Settle battles whose window has closed (every 15 minutes, offset from the sweep)."""
    async with get_session_factory()() as db:
        batch = await settle_ended_battles(db, utcnow(), settings=ctx.get("settings"))
    return batch.settled


def _redis_settings() -> RedisSettings:
    url = get_settings().redis_url or "redis://localhost:6379/0"
    return RedisSettings.from_dsn(url)


class WorkerSettings:
    """arq worker settings for the ledger recovery jobs."""

    functions = [sweep_stale_sessions_job, backfill_orphans_job, settle_ended_battles_job]
    cron_jobs = [
        cron(sweep_stale_sessions_job, minute={0, 15, 30, 45}, second=0, unique=True),
        cron(backfill_orphans_job, minute=30, second=30, unique=True),
        cron(settle_ended_battles_job, minute={5, 20, 35, 50}, second=0, unique=True),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = _redis_settings()
    max_jobs = 2
    job_timeout = 600
