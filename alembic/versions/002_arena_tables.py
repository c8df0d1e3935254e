"""Arena tables.

Creates arena_battles, arena_votes (with the per-category debit split),
arena_earnings, arena_members and arena_boosts.

Revision ID: 002_arena_tables
Revises: 001_ledger_tables
Create Date: 2026-10-01
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002_arena_tables"
down_revision: str | None = "001_ledger_tables"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS arena_battles (
            id VARCHAR(36) PRIMARY KEY,
            title VARCHAR(256) NOT NULL,
            side_a_name VARCHAR(128) NOT NULL,
            side_b_name VARCHAR(128) NOT NULL,
            side_c_name VARCHAR(128),
            side_a_power BIGINT NOT NULL DEFAULT 0,
            side_b_power BIGINT NOT NULL DEFAULT 0,
            side_c_power BIGINT NOT NULL DEFAULT 0,
            prize_pool BIGINT NOT NULL DEFAULT 0,
            starts_at TIMESTAMPTZ NOT NULL,
            ends_at TIMESTAMPTZ NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT true,
            winner_side VARCHAR(8),
            settled_at TIMESTAMPTZ,
            total_rewards_distributed BIGINT NOT NULL DEFAULT 0
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS arena_votes (
            id VARCHAR(36) PRIMARY KEY,
            battle_id VARCHAR(36) NOT NULL REFERENCES arena_battles(id) ON DELETE CASCADE,
            user_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            side VARCHAR(8) NOT NULL,
            power_spent BIGINT NOT NULL CHECK (power_spent > 0),
            early_stake_multiplier DOUBLE PRECISION NOT NULL DEFAULT 1.0,
            debited_mining BIGINT NOT NULL DEFAULT 0,
            debited_task BIGINT NOT NULL DEFAULT 0,
            debited_social BIGINT NOT NULL DEFAULT 0,
            debited_referral BIGINT NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT arena_votes_split_check
                CHECK (debited_mining + debited_task + debited_social + debited_referral = power_spent)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_arena_votes_battle ON arena_votes(battle_id)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_arena_votes_user ON arena_votes(user_id)")
    op.execute("""
        CREATE TABLE IF NOT EXISTS arena_earnings (
            id VARCHAR(36) PRIMARY KEY,
            battle_id VARCHAR(36) NOT NULL REFERENCES arena_battles(id) ON DELETE CASCADE,
            vote_id VARCHAR(36) NOT NULL REFERENCES arena_votes(id) ON DELETE CASCADE,
            user_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            stake_amount BIGINT NOT NULL,
            pool_share_earned BIGINT NOT NULL DEFAULT 0,
            streak_bonus BIGINT NOT NULL DEFAULT 0,
            total_earned BIGINT NOT NULL DEFAULT 0,
            is_winner BOOLEAN NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT arena_earnings_vote_id_key UNIQUE (vote_id)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_arena_earnings_user ON arena_earnings(user_id)")
    op.execute("""
        CREATE TABLE IF NOT EXISTS arena_members (
            user_id VARCHAR(36) PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            current_win_streak INTEGER NOT NULL DEFAULT 0,
            best_win_streak INTEGER NOT NULL DEFAULT 0,
            total_wins INTEGER NOT NULL DEFAULT 0
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS arena_boosts (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            battle_id VARCHAR(36),
            boost_percentage INTEGER NOT NULL,
            expires_at TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_arena_boosts_user ON arena_boosts(user_id, expires_at)")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS arena_boosts CASCADE")
    op.execute("DROP TABLE IF EXISTS arena_members CASCADE")
    op.execute("DROP TABLE IF EXISTS arena_earnings CASCADE")
    op.execute("DROP TABLE IF EXISTS arena_votes CASCADE")
    op.execute("DROP TABLE IF EXISTS arena_battles CASCADE")
