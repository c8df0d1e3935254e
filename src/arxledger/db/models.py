"""ORM models for the points ledger.

Proof tables (sessions, tasks, submissions, referrals, check-ins, arena votes and
earnings) are append-only records written by other services; this service only
stamps ``credited_at`` on sessions. ``user_points`` is the one contended row per
user. ``points_audit_log`` is append-only.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from arxledger.db.base import Base

# BIGINT keys do not autoincrement on SQLite; the variant keeps test databases usable.
BigIntId = BigInteger().with_variant(Integer, "sqlite")


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Account mirrored from the external auth provider."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_banned: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class UserRole(Base):
    """Role grants. Only ``admin`` is used."""

    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role", name="user_roles_user_id_role_key"),)

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False)


# ---------------------------------------------------------------------------
# Balance (materialized aggregate + boost inputs)
# ---------------------------------------------------------------------------


class UserPoints(Base):
    """Cached per-user balance. total_points == sum of the four subtotals."""

    __tablename__ = "user_points"

    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    mining_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    task_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    social_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    referral_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    total_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")

    # Boost inputs maintained by other features
    referral_bonus_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    x_post_boost_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    daily_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class XProfile(Base):
    """Scanned social profile; carries a time-limited boost."""

    __tablename__ = "x_profiles"

    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    boost_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    boost_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ArenaBoost(Base):
    """Time-limited boost granted to arena winners."""

    __tablename__ = "arena_boosts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    battle_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    boost_percentage: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class NexusBoost(Base):
    """Cross-feature boost; counts only once claimed and until it expires."""

    __tablename__ = "nexus_boosts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    boost_percentage: Mapped[int] = mapped_column(Integer, nullable=False)
    claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Proof tables
# ---------------------------------------------------------------------------


class MiningSession(Base):
    """One timed mining attempt. credited_at is set at most once."""

    __tablename__ = "mining_sessions"
    __table_args__ = (
        Index("idx_mining_sessions_user", "user_id"),
        Index("idx_mining_sessions_active_started", "is_active", "started_at"),
        Index(
            "idx_mining_sessions_one_active",
            "user_id",
            unique=True,
            postgresql_where=text("is_active = true"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    raw_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    credited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class UserTask(Base):
    """Task completion record. Eligible when status == 'completed'."""

    __tablename__ = "user_tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    task_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    points_awarded: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class SocialSubmission(Base):
    """Social-media proof. Eligible when status == 'approved'."""

    __tablename__ = "social_submissions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    post_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    points_awarded: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Referral(Base):
    """Referral row. points_awarded may be null on legacy rows."""

    __tablename__ = "referrals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    referrer_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    referred_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    points_awarded: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class DailyCheckin(Base):
    """Daily check-in award; counted with the social category."""

    __tablename__ = "daily_checkins"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    points_awarded: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    checkin_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


# ---------------------------------------------------------------------------
# Arena (staking pools)
# ---------------------------------------------------------------------------


class ArenaBattle(Base):
    """Prediction market. settled_at is the settlement CAS marker."""

    __tablename__ = "arena_battles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    side_a_name: Mapped[str] = mapped_column(String(128), nullable=False)
    side_b_name: Mapped[str] = mapped_column(String(128), nullable=False)
    side_c_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    side_a_power: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    side_b_power: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    side_c_power: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    prize_pool: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    winner_side: Mapped[str | None] = mapped_column(String(8), nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    total_rewards_distributed: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")


class ArenaVote(Base):
    """Stake debit. The debited_* columns record which subtotals paid for it."""

    __tablename__ = "arena_votes"
    __table_args__ = (Index("idx_arena_votes_battle", "battle_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    battle_id: Mapped[str] = mapped_column(String(36), ForeignKey("arena_battles.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    side: Mapped[str] = mapped_column(String(8), nullable=False)
    power_spent: Mapped[int] = mapped_column(BigInteger, nullable=False)
    early_stake_multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.0, server_default="1.0")
    debited_mining: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    debited_task: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    debited_social: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    debited_referral: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ArenaEarning(Base):
    """Resolved payout for one vote (zero for losers)."""

    __tablename__ = "arena_earnings"
    __table_args__ = (UniqueConstraint("vote_id", name="arena_earnings_vote_id_key"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    battle_id: Mapped[str] = mapped_column(String(36), ForeignKey("arena_battles.id", ondelete="CASCADE"), nullable=False)
    vote_id: Mapped[str] = mapped_column(String(36), ForeignKey("arena_votes.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    stake_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    pool_share_earned: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    streak_bonus: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    total_earned: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    is_winner: Mapped[bool] = mapped_column(Boolean, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ArenaMember(Base):
    """Per-user arena win streak stats."""

    __tablename__ = "arena_members"

    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    current_win_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    best_win_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_wins: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


class PointsAuditLog(Base):
    """Immutable record of every reconciliation and clamp decision."""

    __tablename__ = "points_audit_log"
    __table_args__ = (Index("idx_points_audit_user_created", "user_id", "created_at"),)

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    audit_type: Mapped[str] = mapped_column(String(32), nullable=False)

    stored_mining_points: Mapped[int] = mapped_column(BigInteger, nullable=False)
    stored_task_points: Mapped[int] = mapped_column(BigInteger, nullable=False)
    stored_social_points: Mapped[int] = mapped_column(BigInteger, nullable=False)
    stored_referral_points: Mapped[int] = mapped_column(BigInteger, nullable=False)
    stored_total_points: Mapped[int] = mapped_column(BigInteger, nullable=False)

    computed_mining_points: Mapped[int] = mapped_column(BigInteger, nullable=False)
    computed_task_points: Mapped[int] = mapped_column(BigInteger, nullable=False)
    computed_social_points: Mapped[int] = mapped_column(BigInteger, nullable=False)
    computed_referral_points: Mapped[int] = mapped_column(BigInteger, nullable=False)
    computed_checkin_points: Mapped[int] = mapped_column(BigInteger, nullable=False)
    computed_total_points: Mapped[int] = mapped_column(BigInteger, nullable=False)

    mining_diff: Mapped[int] = mapped_column(BigInteger, nullable=False)
    task_diff: Mapped[int] = mapped_column(BigInteger, nullable=False)
    social_diff: Mapped[int] = mapped_column(BigInteger, nullable=False)
    referral_diff: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_diff: Mapped[int] = mapped_column(BigInteger, nullable=False)

    action_taken: Mapped[str] = mapped_column(String(16), nullable=False)
    points_delta: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


@event.listens_for(PointsAuditLog, "before_update")
def _refuse_audit_update(_mapper, _connection, target) -> None:  # type: ignore[no-untyped-def]
    msg = f"points_audit_log is append-only (id={target.id})"
    raise RuntimeError(msg)


@event.listens_for(PointsAuditLog, "before_delete")
def _refuse_audit_delete(_mapper, _connection, target) -> None:  # type: ignore[no-untyped-def]
    msg = f"points_audit_log is append-only (id={target.id})"
    raise RuntimeError(msg)
