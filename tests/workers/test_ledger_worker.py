"""Tests for the ledger recovery jobs."""

from __future__ import annotations

from datetime import timedelta

import pytest

from arxledger.clock import utcnow
from arxledger.workers.ledger_worker import (
    WorkerSettings,
    backfill_orphans_job,
    settle_ended_battles_job,
    sweep_stale_sessions_job,
)


class TestJobs:
    """Jobs run against the configured database and report credited counts."""

    @pytest.mark.asyncio
    async def test_sweep_job_credits_stale_sessions(self, make_user, add_session) -> None:
        user_id = await make_user()
        await add_session(user_id, utcnow() - timedelta(hours=10))
        await add_session(await make_user(), utcnow() - timedelta(hours=1))

        assert await sweep_stale_sessions_job({}) == 1
        assert await sweep_stale_sessions_job({}) == 0

    @pytest.mark.asyncio
    async def test_backfill_job_credits_orphans(self, make_user, add_session) -> None:
        user_id = await make_user()
        ended = utcnow() - timedelta(hours=3)
        await add_session(user_id, ended - timedelta(hours=2), active=False, ended_at=ended, raw_points=20)

        assert await backfill_orphans_job({}) == 1
        assert await backfill_orphans_job({}) == 0

    @pytest.mark.asyncio
    async def test_settle_job_closes_ended_battles(self, add_battle) -> None:
        now = utcnow()
        await add_battle(now - timedelta(hours=10), now - timedelta(hours=1))
        await add_battle(now - timedelta(hours=1), now + timedelta(hours=9))

        assert await settle_ended_battles_job({}) == 1
        assert await settle_ended_battles_job({}) == 0


class TestSchedule:
    def test_all_jobs_are_scheduled(self) -> None:
        names = {job.name for job in WorkerSettings.cron_jobs}
        assert names == {
            "cron:sweep_stale_sessions_job",
            "cron:backfill_orphans_job",
            "cron:settle_ended_battles_job",
        }

    def test_sweep_runs_every_quarter_hour(self) -> None:
        sweep = next(job for job in WorkerSettings.cron_jobs if job.name == "cron:sweep_stale_sessions_job")
        assert sweep.minute == {0, 15, 30, 45}
