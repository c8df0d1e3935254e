"""Append-only audit log.

Adds a trigger that rejects UPDATE and DELETE on points_audit_log, so the
audit trail stays immutable even for direct SQL access.

Revision ID: 003_audit_append_only
Revises: 002_arena_tables
Create Date: 2026-10-01
"""

from collections.abc import Sequence

from alembic import op

revision: str = "003_audit_append_only"
down_revision: str | None = "002_arena_tables"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute("""
        CREATE OR REPLACE FUNCTION points_audit_log_immutable() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'points_audit_log is append-only';
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER trg_points_audit_log_immutable
        BEFORE UPDATE OR DELETE ON points_audit_log
        FOR EACH ROW EXECUTE FUNCTION points_audit_log_immutable()
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_points_audit_log_immutable ON points_audit_log")
    op.execute("DROP FUNCTION IF EXISTS points_audit_log_immutable()")
