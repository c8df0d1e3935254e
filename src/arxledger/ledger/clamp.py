"""Anti-inflation clamp: lowers balances that exceed what proof can justify.

Only users whose stored mining is out of proportion to proven mining are
examined. A clamp lowers each subtotal to min(stored, proven) and is preceded
by a committed ``admin_clamp`` audit row with the exact before/after values.
Users without any proof rows are left alone and noted as inconclusive.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from arxledger.config import Settings, get_settings
from arxledger.db.models import UserPoints
from arxledger.ledger import audit, balance
from arxledger.ledger.errors import Inconclusive
from arxledger.ledger.pagination import apply_cursor, encode_cursor
from arxledger.ledger.proofs import ProofTotals, compute_proof_totals, mining_ratio, require_proof
from arxledger.ledger.sweeper import clamp_batch_size

logger = logging.getLogger(__name__)

_NO_DIFF = {c: 0 for c in (*balance.CATEGORIES, "total")}


@dataclass
class ClampResult:
    user_id: str
    status: str  # clamped | ok | skipped | inconclusive | conflict | failed
    ratio: float
    before: dict[str, int] = field(default_factory=dict)
    after: dict[str, int] = field(default_factory=dict)
    points_delta: int = 0
    audit_id: int | None = None
    notes: str | None = None


@dataclass
class ClampReport:
    processed: int = 0
    clamped: int = 0
    inconclusive: int = 0
    failed: int = 0
    total_points_delta: int = 0
    total: int = 0
    has_more: bool = False
    next_cursor: str | None = None
    dry_run: bool = False
    threshold: float = 0.0
    results: list[ClampResult] = field(default_factory=list)


def _clamped(before: dict[str, int], proof: ProofTotals) -> dict[str, int]:
    targets = proof.as_targets()
    after = {c: min(before[c], targets[c]) for c in balance.CATEGORIES}
    after["total"] = sum(after[c] for c in balance.CATEGORIES)
    return after


async def clamp_user(
    db: AsyncSession,
    user_id: str,
    now: datetime,
    threshold: float,
    dry_run: bool = False,
    actor: str | None = None,
    settings: Settings | None = None,
) -> ClampResult:
    """Clamp one user against their proof totals."""
    s = settings or get_settings()
    before = balance.subtotals(await balance.get_points(db, user_id))
    proof = await compute_proof_totals(db, user_id, s)
    ratio = mining_ratio(before["mining"], proof.mining)

    if ratio <= threshold:
        return ClampResult(user_id=user_id, status="ok", ratio=ratio, before=before)

    try:
        require_proof(proof, user_id)
    except Inconclusive as exc:
        logger.info("Skipping clamp for user %s: %s", user_id, exc.reason)
        result = ClampResult(user_id=user_id, status="inconclusive", ratio=ratio, before=before, notes=exc.reason)
        if not dry_run:
            entry = await audit.write_audit_entry(
                db,
                user_id=user_id,
                audit_type=audit.AUDIT_ADMIN_CLAMP,
                stored=before,
                computed=proof,
                diffs=_NO_DIFF,
                action=audit.ACTION_NONE,
                points_delta=0,
                now=now,
                notes=exc.reason,
                actor=actor,
            )
            result.audit_id = entry.id
            await db.commit()
        return result

    if not dry_run:
        # the audit must describe the row as it is when the clamp is written
        before = balance.subtotals(await balance.get_points(db, user_id, for_update=True))
    after = _clamped(before, proof)
    if all(after[c] == before[c] for c in balance.CATEGORIES):
        await db.commit()
        return ClampResult(user_id=user_id, status="skipped", ratio=ratio, before=before, after=after)

    diffs = {c: after[c] - before[c] for c in (*balance.CATEGORIES, "total")}
    points_delta = after["total"] - before["total"]
    result = ClampResult(
        user_id=user_id,
        status="clamped",
        ratio=ratio,
        before=before,
        after=after,
        points_delta=points_delta,
    )
    if dry_run:
        return result

    entry = await audit.write_audit_entry(
        db,
        user_id=user_id,
        audit_type=audit.AUDIT_ADMIN_CLAMP,
        stored=before,
        computed=proof,
        diffs=diffs,
        action=audit.ACTION_CLAMPED,
        points_delta=points_delta,
        now=now,
        notes=f"mining ratio {ratio:.2f} above threshold {threshold}",
        actor=actor,
    )
    result.audit_id = entry.id
    await db.commit()

    if await balance.lower_subtotals(db, user_id, proof.as_targets(), now, expected=before):
        await db.commit()
        logger.warning("Clamped user %s by %d points (ratio=%.2f)", user_id, points_delta, ratio)
        return result

    # A credit landed between the audit and the update; record that it was not applied.
    current = balance.subtotals(await balance.get_points(db, user_id))
    await audit.write_audit_entry(
        db,
        user_id=user_id,
        audit_type=audit.AUDIT_ADMIN_CLAMP,
        stored=current,
        computed=proof,
        diffs=_NO_DIFF,
        action=audit.ACTION_NONE,
        points_delta=0,
        now=now,
        notes=f"clamp {result.audit_id} not applied: balance changed",
        actor=actor,
    )
    await db.commit()
    logger.warning("Clamp for user %s not applied: balance changed after audit %s", user_id, result.audit_id)
    return ClampResult(
        user_id=user_id,
        status="conflict",
        ratio=ratio,
        before=before,
        after=current,
        audit_id=result.audit_id,
        notes="balance changed before the clamp applied",
    )


async def clamp_batch(
    db: AsyncSession,
    now: datetime,
    threshold: float | None = None,
    offset: int = 0,
    batch_size: int | None = None,
    dry_run: bool = False,
    actor: str | None = None,
    settings: Settings | None = None,
    cursor: str | None = None,
) -> ClampReport:
    """Scan one page of balances, largest first, and clamp the inflated ones.

    Pass the returned ``next_cursor`` to read the following page. ``offset``
    skips rows after the cursor.
    """
    s = settings or get_settings()
    threshold = s.clamp_threshold if threshold is None else float(threshold)
    limit = clamp_batch_size(batch_size, s)
    offset = max(int(offset), 0)

    total = int(await db.scalar(select(func.count()).select_from(UserPoints)) or 0)
    query = apply_cursor(
        select(UserPoints.user_id, UserPoints.total_points).order_by(
            UserPoints.total_points.desc(), UserPoints.user_id
        ),
        cursor,
    )
    page = (await db.execute(query.offset(offset).limit(limit + 1))).all()
    rows = [(user_id, int(points_total or 0)) for user_id, points_total in page[:limit]]

    report = ClampReport(total=total, dry_run=dry_run, threshold=threshold)
    report.has_more = len(page) > limit
    if report.has_more:
        report.next_cursor = encode_cursor(rows[-1][1], rows[-1][0])

    for user_id, _ in rows:
        report.processed += 1
        try:
            result = await clamp_user(db, user_id, now, threshold, dry_run=dry_run, actor=actor, settings=s)
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.exception("Failed to clamp user %s", user_id)
            report.failed += 1
            report.results.append(ClampResult(user_id=user_id, status="failed", ratio=0.0, notes=str(exc)))
            continue

        if result.status == "ok":
            continue
        report.results.append(result)
        if result.status == "clamped":
            report.clamped += 1
            report.total_points_delta += result.points_delta
        elif result.status == "inconclusive":
            report.inconclusive += 1
        elif result.status == "conflict":
            report.failed += 1

    logger.info(
        "Clamp batch offset=%d threshold=%.2f: processed=%d clamped=%d delta=%d dry_run=%s",
        offset, threshold, report.processed, report.clamped, report.total_points_delta, dry_run,
    )
    return report
