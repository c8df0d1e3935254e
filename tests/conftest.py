"""Shared test fixtures.

Every test gets a fresh file-backed SQLite database (aiosqlite) created from
the ORM metadata, so the real SQL of the ledger runs unchanged.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

os.environ.setdefault("ARX_JWT_SECRET", "test-secret-for-ledger-tests-0123456789")
os.environ.setdefault("ARX_LOG_FORMAT", "console")
os.environ.setdefault("ARX_RATE_LIMIT_BACKEND", "memory")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from arxledger.auth.jwt import create_access_token
from arxledger.config import get_settings
from arxledger.database import close_db, get_engine, get_session_factory, init_db
from arxledger.db.base import Base
from arxledger.db.models import (
    ArenaBattle,
    DailyCheckin,
    MiningSession,
    Referral,
    SocialSubmission,
    User,
    UserPoints,
    UserRole,
    UserTask,
)
from arxledger.main import create_app
from arxledger.middleware.rate_limit import InMemoryRateLimitStore

get_settings.cache_clear()

NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    """Fixed wall clock for ledger calls."""
    return NOW


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[None, None]:
    """Initialize the global engine against a throwaway SQLite file."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest_asyncio.fixture
async def session_factory(engine: None) -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session for ledger calls and assertions."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def make_user(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[str]]:
    """Factory: create a user (optionally admin, optionally with a balance) and return its id."""

    async def _make(
        *,
        admin: bool = False,
        banned: bool = False,
        mining: int = 0,
        task: int = 0,
        social: int = 0,
        referral: int = 0,
        referral_bonus: int = 0,
        x_post_boost: int = 0,
        streak: int = 0,
        with_points: bool = True,
    ) -> str:
        async with session_factory() as db:
            user = User(username="tester", is_banned=banned)
            db.add(user)
            await db.flush()
            if admin:
                db.add(UserRole(user_id=user.id, role="admin"))
            if with_points:
                db.add(
                    UserPoints(
                        user_id=user.id,
                        mining_points=mining,
                        task_points=task,
                        social_points=social,
                        referral_points=referral,
                        total_points=mining + task + social + referral,
                        referral_bonus_percentage=referral_bonus,
                        x_post_boost_percentage=x_post_boost,
                        daily_streak=streak,
                    )
                )
            await db.commit()
            return user.id

    return _make


@pytest.fixture
def auth_headers() -> Callable[[str], dict[str, str]]:
    """Factory: bearer headers for a user id."""

    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers


@pytest_asyncio.fixture
async def client(engine: None) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client over the app with a fresh in-memory rate limiter."""
    app = create_app(rate_limit_store=InMemoryRateLimitStore())
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def add_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[str]]:
    """Factory: insert a mining session row and return its id."""

    async def _add(
        user_id: str,
        started_at: datetime,
        *,
        active: bool = True,
        ended_at: datetime | None = None,
        raw_points: int = 0,
        credited_at: datetime | None = None,
    ) -> str:
        async with session_factory() as db:
            session = MiningSession(
                user_id=user_id,
                started_at=started_at,
                ended_at=ended_at,
                is_active=active,
                raw_points=raw_points,
                credited_at=credited_at,
            )
            db.add(session)
            await db.commit()
            return session.id

    return _add


@pytest_asyncio.fixture
async def add_battle(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[str]]:
    """Factory: insert an arena battle and return its id."""

    async def _add(
        starts_at: datetime,
        ends_at: datetime,
        *,
        prize_pool: int = 0,
        side_c: str | None = None,
        active: bool = True,
    ) -> str:
        async with session_factory() as db:
            battle = ArenaBattle(
                title="Bulls vs Bears",
                side_a_name="Bulls",
                side_b_name="Bears",
                side_c_name=side_c,
                prize_pool=prize_pool,
                starts_at=starts_at,
                ends_at=ends_at,
                is_active=active,
            )
            db.add(battle)
            await db.commit()
            return battle.id

    return _add


@pytest_asyncio.fixture
async def add_proofs(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[None]]:
    """Factory: insert proof rows for a user.

    ``sessions`` are frozen, already credited session amounts; ``tasks`` and
    ``submissions`` are (status, points) pairs; ``referrals`` are points awarded
    per referred user (None for the default bonus).
    """

    async def _add(
        user_id: str,
        *,
        sessions: tuple[int, ...] = (),
        tasks: tuple[tuple[str, int], ...] = (),
        submissions: tuple[tuple[str, int], ...] = (),
        checkins: tuple[int, ...] = (),
        referrals: tuple[int | None, ...] = (),
    ) -> None:
        async with session_factory() as db:
            for i, raw in enumerate(sessions):
                started = NOW - timedelta(days=i + 1)
                db.add(
                    MiningSession(
                        user_id=user_id,
                        started_at=started,
                        ended_at=started + timedelta(hours=8),
                        is_active=False,
                        raw_points=raw,
                        credited_at=started + timedelta(hours=8),
                    )
                )
            for status, points in tasks:
                db.add(UserTask(user_id=user_id, status=status, points_awarded=points))
            for status, points in submissions:
                db.add(SocialSubmission(user_id=user_id, status=status, points_awarded=points))
            for i, points in enumerate(checkins):
                db.add(DailyCheckin(user_id=user_id, points_awarded=points, checkin_date=NOW - timedelta(days=i)))
            for points in referrals:
                referred = User(username="referred")
                db.add(referred)
                await db.flush()
                db.add(Referral(referrer_id=user_id, referred_id=referred.id, points_awarded=points))
            await db.commit()

    return _add
