"""Append-only audit trail for reconciliation and clamp decisions."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from arxledger.db.models import PointsAuditLog
from arxledger.ledger.proofs import ProofTotals

AUDIT_RECONCILIATION = "reconciliation"
AUDIT_DRY_RUN = "dry_run"
AUDIT_ADMIN_CLAMP = "admin_clamp"

ACTION_RESTORED = "restored"
ACTION_CLAMPED = "clamped"
ACTION_FLAGGED = "flagged"
ACTION_NONE = "none"


async def write_audit_entry(
    db: AsyncSession,
    *,
    user_id: str,
    audit_type: str,
    stored: dict[str, int],
    computed: ProofTotals,
    diffs: dict[str, int],
    action: str,
    points_delta: int,
    now: datetime,
    notes: str | None = None,
    actor: str | None = None,
) -> PointsAuditLog:
    """Stage one audit row. The caller commits it before touching the balance."""
    entry = PointsAuditLog(
        user_id=user_id,
        audit_type=audit_type,
        stored_mining_points=stored["mining"],
        stored_task_points=stored["task"],
        stored_social_points=stored["social"],
        stored_referral_points=stored["referral"],
        stored_total_points=stored["total"],
        computed_mining_points=computed.mining,
        computed_task_points=computed.task,
        computed_social_points=computed.social,
        computed_referral_points=computed.referral,
        computed_checkin_points=computed.checkin,
        computed_total_points=computed.total,
        mining_diff=diffs["mining"],
        task_diff=diffs["task"],
        social_diff=diffs["social"],
        referral_diff=diffs["referral"],
        total_diff=diffs["total"],
        action_taken=action,
        points_delta=points_delta,
        notes=notes,
        created_by=actor,
        created_at=now,
    )
    db.add(entry)
    await db.flush()
    return entry


async def list_audit_entries(db: AsyncSession, user_id: str, limit: int = 50) -> list[PointsAuditLog]:
    result = await db.execute(
        select(PointsAuditLog)
        .where(PointsAuditLog.user_id == user_id)
        .order_by(PointsAuditLog.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
