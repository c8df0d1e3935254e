"""Ledger tables.

Creates users, user_roles, user_points, boost sources, the proof tables
(mining_sessions, user_tasks, social_submissions, referrals, daily_checkins)
and points_audit_log.

Revision ID: 001_ledger_tables
Revises:
Create Date: 2026-10-01
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_ledger_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users and roles ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id VARCHAR(36) PRIMARY KEY,
            username VARCHAR(64),
            is_banned BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_roles (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            role VARCHAR(16) NOT NULL,
            CONSTRAINT user_roles_user_id_role_key UNIQUE (user_id, role)
        )
    """)

    # --- Balance ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_points (
            user_id VARCHAR(36) PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            mining_points BIGINT NOT NULL DEFAULT 0,
            task_points BIGINT NOT NULL DEFAULT 0,
            social_points BIGINT NOT NULL DEFAULT 0,
            referral_points BIGINT NOT NULL DEFAULT 0,
            total_points BIGINT NOT NULL DEFAULT 0,
            referral_bonus_percentage INTEGER NOT NULL DEFAULT 0,
            x_post_boost_percentage INTEGER NOT NULL DEFAULT 0,
            daily_streak INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ,
            CONSTRAINT user_points_total_check
                CHECK (total_points = mining_points + task_points + social_points + referral_points)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_points_total
        ON user_points(total_points DESC)
    """)

    # --- Boost sources ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS x_profiles (
            user_id VARCHAR(36) PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            username VARCHAR(64),
            boost_percentage INTEGER NOT NULL DEFAULT 0,
            boost_expires_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS nexus_boosts (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            boost_percentage INTEGER NOT NULL,
            claimed BOOLEAN NOT NULL DEFAULT false,
            expires_at TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_nexus_boosts_user
        ON nexus_boosts(user_id, expires_at)
    """)

    # --- Proof tables ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS mining_sessions (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            started_at TIMESTAMPTZ NOT NULL,
            ended_at TIMESTAMPTZ,
            is_active BOOLEAN NOT NULL DEFAULT true,
            raw_points BIGINT NOT NULL DEFAULT 0,
            credited_at TIMESTAMPTZ
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_mining_sessions_user ON mining_sessions(user_id)")
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_mining_sessions_active_started
        ON mining_sessions(is_active, started_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_mining_sessions_orphans
        ON mining_sessions(ended_at)
        WHERE is_active = false AND credited_at IS NULL AND raw_points > 0
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_mining_sessions_one_active
        ON mining_sessions(user_id)
        WHERE is_active = true
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_tasks (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            task_id VARCHAR(36),
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            points_awarded BIGINT NOT NULL DEFAULT 0,
            completed_at TIMESTAMPTZ
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_user_tasks_user ON user_tasks(user_id, status)")
    op.execute("""
        CREATE TABLE IF NOT EXISTS social_submissions (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            post_url TEXT,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            points_awarded BIGINT NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_social_submissions_user ON social_submissions(user_id, status)")
    op.execute("""
        CREATE TABLE IF NOT EXISTS referrals (
            id VARCHAR(36) PRIMARY KEY,
            referrer_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            referred_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            points_awarded BIGINT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_referrals_referrer ON referrals(referrer_id)")
    op.execute("""
        CREATE TABLE IF NOT EXISTS daily_checkins (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            points_awarded BIGINT NOT NULL DEFAULT 0,
            checkin_date TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_daily_checkins_user ON daily_checkins(user_id)")

    # --- Audit log ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS points_audit_log (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(36) NOT NULL,
            audit_type VARCHAR(32) NOT NULL,
            stored_mining_points BIGINT NOT NULL,
            stored_task_points BIGINT NOT NULL,
            stored_social_points BIGINT NOT NULL,
            stored_referral_points BIGINT NOT NULL,
            stored_total_points BIGINT NOT NULL,
            computed_mining_points BIGINT NOT NULL,
            computed_task_points BIGINT NOT NULL,
            computed_social_points BIGINT NOT NULL,
            computed_referral_points BIGINT NOT NULL,
            computed_checkin_points BIGINT NOT NULL,
            computed_total_points BIGINT NOT NULL,
            mining_diff BIGINT NOT NULL,
            task_diff BIGINT NOT NULL,
            social_diff BIGINT NOT NULL,
            referral_diff BIGINT NOT NULL,
            total_diff BIGINT NOT NULL,
            action_taken VARCHAR(16) NOT NULL,
            points_delta BIGINT NOT NULL DEFAULT 0,
            notes TEXT,
            created_by VARCHAR(36),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_points_audit_user_created
        ON points_audit_log(user_id, created_at DESC)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS points_audit_log CASCADE")
    op.execute("DROP TABLE IF EXISTS daily_checkins CASCADE")
    op.execute("DROP TABLE IF EXISTS referrals CASCADE")
    op.execute("DROP TABLE IF EXISTS social_submissions CASCADE")
    op.execute("DROP TABLE IF EXISTS user_tasks CASCADE")
    op.execute("DROP TABLE IF EXISTS mining_sessions CASCADE")
    op.execute("DROP TABLE IF EXISTS nexus_boosts CASCADE")
    op.execute("DROP TABLE IF EXISTS x_profiles CASCADE")
    op.execute("DROP TABLE IF EXISTS user_points CASCADE")
    op.execute("DROP TABLE IF EXISTS user_roles CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
