"""Boost aggregation and mining rate caps.

``total_boost`` and ``max_session_award`` are the single implementation of the
mining formula; the crediting gate, the stale-session sweeper and payout quotes
all call them.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from arxledger.config import Settings, get_settings
from arxledger.db.models import ArenaBoost, NexusBoost, UserPoints, XProfile


@dataclass(frozen=True)
class BoostSnapshot:
    """Boost inputs for one user at one instant (percent values)."""

    referral: int = 0
    social_post: int = 0
    streak: int = 0
    profile_scan: int = 0
    arena: list[int] = field(default_factory=list)
    nexus: list[int] = field(default_factory=list)


def total_boost(boosts: BoostSnapshot, settings: Settings | None = None) -> int:
    """Combine boost sources into one percentage, each source capped, total capped."""
    s = settings or get_settings()
    total = (
        min(max(boosts.referral, 0), s.referral_boost_cap)
        + max(boosts.social_post, 0)
        + min(max(boosts.streak, 0), s.streak_boost_cap)
        + max(boosts.profile_scan, 0)
        + sum(max(b, 0) for b in boosts.arena)
        + sum(max(b, 0) for b in boosts.nexus)
    )
    return min(total, s.max_total_boost)


def effective_hourly_rate(boost_percent: float, settings: Settings | None = None) -> float:
    """Points per hour at the given boost, capped at the hourly ceiling."""
    s = settings or get_settings()
    return min(s.base_points_per_hour * (1 + boost_percent / 100), s.max_points_per_hour)


def capped_elapsed(started_at: datetime, end: datetime, settings: Settings | None = None) -> timedelta:
    """Elapsed mining time, never negative, never above the session cap."""
    s = settings or get_settings()
    elapsed = max(end - started_at, timedelta(0))
    return min(elapsed, timedelta(hours=s.max_session_hours))


def max_session_award(elapsed: timedelta, boost_percent: float, settings: Settings | None = None) -> int:
    """floor(elapsed_hours * rate), capped at the absolute per-session ceiling."""
    s = settings or get_settings()
    elapsed = min(max(elapsed, timedelta(0)), timedelta(hours=s.max_session_hours))
    hours = int(elapsed.total_seconds()) / 3600
    points = math.floor(hours * effective_hourly_rate(boost_percent, s))
    return min(points, s.max_session_points)


async def load_boost_snapshot(db: AsyncSession, user_id: str, now: datetime) -> BoostSnapshot:
    """Read a user's boost inputs, keeping only grants still active at ``now``."""
    points_row = (
        await db.execute(
            select(
                UserPoints.referral_bonus_percentage,
                UserPoints.x_post_boost_percentage,
                UserPoints.daily_streak,
            ).where(UserPoints.user_id == user_id)
        )
    ).one_or_none()

    profile_boost = await db.scalar(
        select(func.coalesce(func.sum(XProfile.boost_percentage), 0)).where(
            XProfile.user_id == user_id,
            or_(XProfile.boost_expires_at.is_(None), XProfile.boost_expires_at > now),
        )
    )

    arena_rows = await db.scalars(
        select(ArenaBoost.boost_percentage).where(
            ArenaBoost.user_id == user_id,
            ArenaBoost.expires_at > now,
        )
    )
    nexus_rows = await db.scalars(
        select(NexusBoost.boost_percentage).where(
            NexusBoost.user_id == user_id,
            NexusBoost.claimed.is_(True),
            NexusBoost.expires_at > now,
        )
    )

    return BoostSnapshot(
        referral=points_row.referral_bonus_percentage if points_row else 0,
        social_post=points_row.x_post_boost_percentage if points_row else 0,
        streak=points_row.daily_streak if points_row else 0,
        profile_scan=int(profile_boost or 0),
        arena=[int(b or 0) for b in arena_rows],
        nexus=[int(b or 0) for b in nexus_rows],
    )
