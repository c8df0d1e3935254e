"""Reconciliation: restore points that proof rows show a user is owed.

Reconciliation only ever raises a subtotal. Balances above proof are flagged
for review when the gap exceeds the tolerance; removing points is the clamp's
job. Every run, dry runs included, writes its audit row and commits it before
the balance is touched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from arxledger.config import Settings, get_settings
from arxledger.db.models import MiningSession, UserPoints
from arxledger.ledger import audit, balance
from arxledger.ledger.errors import LedgerError, TransientStoreError
from arxledger.ledger.proofs import ProofTotals, compute_proof_totals
from arxledger.ledger.sweeper import clamp_batch_size

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    user_id: str
    action: str
    stored: dict[str, int]
    computed: dict[str, int]
    diffs: dict[str, int]
    points_delta: int = 0
    audit_id: int | None = None
    error: str | None = None


@dataclass
class ReconciliationReport:
    processed: int = 0
    restored: int = 0
    flagged: int = 0
    no_change: int = 0
    failed: int = 0
    total_points_restored: int = 0
    total: int = 0
    has_more: bool = False
    dry_run: bool = False
    results: list[ReconciliationResult] = field(default_factory=list)


def _computed_dict(proof: ProofTotals) -> dict[str, int]:
    return {**proof.as_targets(), "checkin": proof.checkin, "total": proof.total}


def classify(stored_total: int, proven_total: int, settings: Settings | None = None) -> str:
    """restored / flagged / none, from the stored and proven totals."""
    s = settings or get_settings()
    if proven_total > stored_total:
        return audit.ACTION_RESTORED
    tolerance = max(s.flag_tolerance_points, s.flag_tolerance_ratio * stored_total)
    if stored_total - proven_total > tolerance:
        return audit.ACTION_FLAGGED
    return audit.ACTION_NONE


async def reconcile_user(
    db: AsyncSession,
    user_id: str,
    now: datetime,
    dry_run: bool = False,
    actor: str | None = None,
    settings: Settings | None = None,
) -> ReconciliationResult:
    """Compare one user's balance with proof and restore any shortfall."""
    s = settings or get_settings()
    stored = balance.subtotals(await balance.get_points(db, user_id))
    proof = await compute_proof_totals(db, user_id, s)
    targets = proof.as_targets()

    diffs = {c: targets[c] - stored[c] for c in balance.CATEGORIES}
    diffs["total"] = proof.total - stored["total"]
    action = classify(stored["total"], proof.total, s)
    points_delta = (
        sum(max(targets[c] - stored[c], 0) for c in balance.CATEGORIES)
        if action == audit.ACTION_RESTORED
        else 0
    )
    notes = None
    if action == audit.ACTION_FLAGGED:
        notes = f"stored exceeds proof by {-diffs['total']} points"

    try:
        entry = await audit.write_audit_entry(
            db,
            user_id=user_id,
            audit_type=audit.AUDIT_DRY_RUN if dry_run else audit.AUDIT_RECONCILIATION,
            stored=stored,
            computed=proof,
            diffs=diffs,
            action=action,
            points_delta=points_delta,
            now=now,
            notes=notes,
            actor=actor,
        )
        audit_id = entry.id
        await db.commit()

        if action == audit.ACTION_RESTORED and not dry_run:
            await balance.raise_subtotals(db, user_id, targets, now)
            # Orphaned sessions are now part of the balance; keep the backfill off them.
            await db.execute(
                update(MiningSession)
                .where(
                    MiningSession.user_id == user_id,
                    MiningSession.is_active.is_(False),
                    MiningSession.credited_at.is_(None),
                    MiningSession.raw_points > 0,
                )
                .values(credited_at=now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Failed to reconcile user %s", user_id)
        raise TransientStoreError(f"user {user_id}: reconciliation write failed") from exc

    if action != audit.ACTION_NONE:
        logger.info(
            "Reconciled user %s: action=%s delta=%d dry_run=%s", user_id, action, points_delta, dry_run
        )
    return ReconciliationResult(
        user_id=user_id,
        action=action,
        stored=stored,
        computed=_computed_dict(proof),
        diffs=diffs,
        points_delta=points_delta,
        audit_id=audit_id,
    )


async def reconcile_batch(
    db: AsyncSession,
    now: datetime,
    offset: int = 0,
    batch_size: int | None = None,
    dry_run: bool = False,
    actor: str | None = None,
    settings: Settings | None = None,
) -> ReconciliationReport:
    """Reconcile one page of users; pages are ordered by user id."""
    s = settings or get_settings()
    limit = clamp_batch_size(batch_size, s)
    offset = max(int(offset), 0)

    total = int(await db.scalar(select(func.count()).select_from(UserPoints)) or 0)
    user_ids = list(
        (
            await db.scalars(select(UserPoints.user_id).order_by(UserPoints.user_id).offset(offset).limit(limit))
        ).all()
    )

    report = ReconciliationReport(total=total, dry_run=dry_run)
    for user_id in user_ids:
        report.processed += 1
        try:
            result = await reconcile_user(db, user_id, now, dry_run=dry_run, actor=actor, settings=s)
        except LedgerError as exc:
            logger.warning("Reconciliation failed for user %s: %s", user_id, exc)
            report.failed += 1
            report.results.append(
                ReconciliationResult(user_id=user_id, action="failed", stored={}, computed={}, diffs={}, error=str(exc))
            )
            continue

        report.results.append(result)
        if result.action == audit.ACTION_RESTORED:
            report.restored += 1
            report.total_points_restored += result.points_delta
        elif result.action == audit.ACTION_FLAGGED:
            report.flagged += 1
        else:
            report.no_change += 1

    report.has_more = offset + len(user_ids) < total
    logger.info(
        "Reconciliation batch offset=%d: processed=%d restored=%d flagged=%d points=%d dry_run=%s",
        offset, report.processed, report.restored, report.flagged, report.total_points_restored, dry_run,
    )
    return report
