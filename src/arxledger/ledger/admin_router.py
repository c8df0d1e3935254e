"""Admin batch operations: sweep, backfill, reconcile, clamp."""

from __future__ import annotations

import math

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from arxledger.auth.dependencies import require_admin
from arxledger.clock import utcnow
from arxledger.database import get_session
from arxledger.db.models import User
from arxledger.ledger import audit, schemas
from arxledger.ledger.backfill import backfill_orphans
from arxledger.ledger.clamp import clamp_batch
from arxledger.ledger.reconciliation import ReconciliationReport, reconcile_batch, reconcile_user
from arxledger.ledger.sweeper import sweep_stale_sessions

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])


@router.post("/sessions/sweep", response_model=schemas.SweepResponse)
async def sweep_sessions(
    body: schemas.AdminBatchRequest | None = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> schemas.SweepResponse:
    """Close and credit sessions that ran past the session cap."""
    body = body or schemas.AdminBatchRequest()
    report = await sweep_stale_sessions(db, utcnow(), batch_size=body.batch_size, dry_run=body.dry_run)
    return schemas.SweepResponse(
        processed=report.processed,
        credited=report.credited,
        total_points_delta=report.total_points,
        dry_run=report.dry_run,
        results=[schemas.SweepItemOut.model_validate(r) for r in report.results],
    )


@router.post("/sessions/backfill", response_model=schemas.BackfillResponse)
async def backfill_sessions(
    body: schemas.AdminBatchRequest | None = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> schemas.BackfillResponse:
    """Credit closed sessions that were never paid."""
    body = body or schemas.AdminBatchRequest()
    report = await backfill_orphans(db, utcnow(), limit=body.batch_size, dry_run=body.dry_run)
    return schemas.BackfillResponse(
        processed=report.processed,
        credited=report.credited,
        skipped=report.skipped,
        failed=report.failed,
        total_points_delta=report.total_points,
        dry_run=report.dry_run,
        results=[schemas.BackfillItemOut.model_validate(r) for r in report.results],
    )


@router.post("/points/reconcile", response_model=schemas.ReconcileResponse)
async def reconcile_points(
    body: schemas.AdminBatchRequest | None = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> schemas.ReconcileResponse:
    """Restore points owed according to proof rows, for one user or one page of users."""
    body = body or schemas.AdminBatchRequest()
    now = utcnow()
    if body.user_id:
        result = await reconcile_user(db, body.user_id, now, dry_run=body.dry_run, actor=admin.id)
        report = ReconciliationReport(processed=1, total=1, dry_run=body.dry_run, results=[result])
        if result.action == audit.ACTION_RESTORED:
            report.restored, report.total_points_restored = 1, result.points_delta
        elif result.action == audit.ACTION_FLAGGED:
            report.flagged = 1
        else:
            report.no_change = 1
    else:
        report = await reconcile_batch(
            db, now, offset=body.offset, batch_size=body.batch_size, dry_run=body.dry_run, actor=admin.id
        )

    return schemas.ReconcileResponse(
        processed=report.processed,
        restored=report.restored,
        total_points_delta=report.total_points_restored,
        dry_run=report.dry_run,
        total=report.total,
        has_more=report.has_more,
        summary=schemas.ReconcileSummary(
            restored=report.restored,
            flagged=report.flagged,
            no_change=report.no_change,
            failed=report.failed,
            total_points_restored=report.total_points_restored,
        ),
        results=[schemas.ReconcileItemOut.model_validate(r) for r in report.results],
    )


@router.post("/points/clamp", response_model=schemas.ClampResponse)
async def clamp_points(
    body: schemas.AdminBatchRequest | None = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> schemas.ClampResponse:
    """Lower balances whose mining is out of proportion to proof."""
    body = body or schemas.AdminBatchRequest()
    report = await clamp_batch(
        db,
        utcnow(),
        threshold=body.threshold,
        offset=body.offset,
        batch_size=body.batch_size,
        dry_run=body.dry_run,
        actor=admin.id,
        cursor=body.cursor,
    )
    return schemas.ClampResponse(
        processed=report.processed,
        clamped=report.clamped,
        inconclusive=report.inconclusive,
        failed=report.failed,
        total_points_delta=report.total_points_delta,
        dry_run=report.dry_run,
        threshold=report.threshold,
        total=report.total,
        has_more=report.has_more,
        next_cursor=report.next_cursor,
        results=[
            schemas.ClampItemOut(
                user_id=r.user_id,
                status=r.status,
                ratio=None if math.isinf(r.ratio) else r.ratio,
                before=r.before,
                after=r.after,
                points_delta=r.points_delta,
                audit_id=r.audit_id,
                notes=r.notes,
            )
            for r in report.results
        ],
    )


@router.get("/points/audit/{user_id}", response_model=schemas.AuditListResponse)
async def audit_log(
    user_id: str,
    limit: int = Query(50, ge=1, le=500),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> schemas.AuditListResponse:
    """Most recent audit entries for a user, newest first."""
    entries = await audit.list_audit_entries(db, user_id, limit=limit)
    return schemas.AuditListResponse(entries=[schemas.AuditEntryOut.model_validate(e) for e in entries])
