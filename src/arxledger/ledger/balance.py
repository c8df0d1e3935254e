"""Writes to the user_points balance row.

Every mutation is one UPDATE statement that recomputes ``total_points`` from
the new subtotal expressions, so the row can never drift from
total == mining + task + social + referral, even under concurrent writers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import case, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from arxledger.db.models import UserPoints
from arxledger.ledger.errors import TransientStoreError

CATEGORIES: tuple[str, ...] = ("mining", "task", "social", "referral")

# Stake debits drain subtotals in this order. This is a ledger policy: changing
# it changes which category a debit is attributed to in every later proof
# computation, so it is recorded per debit on the stake row.
DEBIT_PRIORITY: tuple[str, ...] = ("mining", "task", "social", "referral")

_COLUMNS = {
    "mining": UserPoints.mining_points,
    "task": UserPoints.task_points,
    "social": UserPoints.social_points,
    "referral": UserPoints.referral_points,
}


def column_for(category: str) -> Any:  # noqa: ANN401
    try:
        return _COLUMNS[category]
    except KeyError:
        msg = f"Unknown point category: {category}"
        raise ValueError(msg) from None


def subtotals(points: UserPoints | None) -> dict[str, int]:
    """Stored subtotals plus total as plain ints (zeros when the row is missing)."""
    if points is None:
        return {"mining": 0, "task": 0, "social": 0, "referral": 0, "total": 0}
    return {
        "mining": int(points.mining_points or 0),
        "task": int(points.task_points or 0),
        "social": int(points.social_points or 0),
        "referral": int(points.referral_points or 0),
        "total": int(points.total_points or 0),
    }


async def get_points(db: AsyncSession, user_id: str, *, for_update: bool = False) -> UserPoints | None:
    """Read the balance row, bypassing any stale copy in the identity map."""
    stmt = select(UserPoints).where(UserPoints.user_id == user_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_or_create_points(db: AsyncSession, user_id: str) -> UserPoints:
    """Get or create the balance row for a user."""
    points = await get_points(db, user_id)
    if points is None:
        points = UserPoints(user_id=user_id)
        db.add(points)
        await db.flush()
    return points


async def increment_points(
    db: AsyncSession,
    user_id: str,
    category: str,
    amount: int,
    now: datetime,
) -> UserPoints:
    """Add ``amount`` to one subtotal and the total. Caller owns the transaction."""
    if amount < 0:
        msg = f"increment_points amount must be >= 0, got {amount}"
        raise ValueError(msg)
    col = column_for(category)
    await get_or_create_points(db, user_id)
    await db.execute(
        update(UserPoints)
        .where(UserPoints.user_id == user_id)
        .values(
            {
                col: col + amount,
                UserPoints.total_points: UserPoints.total_points + amount,
                UserPoints.updated_at: now,
            }
        )
        .execution_options(synchronize_session=False)
    )
    points = await get_points(db, user_id)
    if points is None:
        msg = f"balance row for user {user_id} vanished during increment"
        raise TransientStoreError(msg)
    return points


def split_debit(balances: dict[str, int], amount: int) -> dict[str, int]:
    """Attribute a debit to subtotals following DEBIT_PRIORITY.

    Returns the amount taken from each category. Raises ValueError when the
    subtotals cannot cover the debit.
    """
    if amount < 0:
        msg = "debit amount must be >= 0"
        raise ValueError(msg)
    remaining = amount
    taken = {c: 0 for c in CATEGORIES}
    for category in DEBIT_PRIORITY:
        if remaining <= 0:
            break
        available = max(balances.get(category, 0), 0)
        take = min(remaining, available)
        taken[category] = take
        remaining -= take
    if remaining > 0:
        msg = f"insufficient balance: short by {remaining}"
        raise ValueError(msg)
    return taken


async def apply_debit(
    db: AsyncSession,
    user_id: str,
    split: dict[str, int],
    now: datetime,
) -> bool:
    """Subtract a precomputed split. Returns False if a subtotal no longer covers it."""
    amount = sum(split.values())
    values: dict[Any, Any] = {
        UserPoints.total_points: UserPoints.total_points - amount,
        UserPoints.updated_at: now,
    }
    conditions = [UserPoints.user_id == user_id]
    for category, take in split.items():
        if take:
            col = column_for(category)
            values[col] = col - take
            conditions.append(col >= take)
    result = await db.execute(
        update(UserPoints)
        .where(*conditions)
        .values(values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _bounded(col: Any, target: int, *, raise_only: bool) -> Any:  # noqa: ANN401
    bound = literal(int(target))
    if raise_only:
        return case((col < bound, bound), else_=col)
    return case((col > bound, bound), else_=col)


async def _move_towards(
    db: AsyncSession,
    user_id: str,
    targets: dict[str, int],
    now: datetime,
    *,
    raise_only: bool,
    expected: dict[str, int] | None = None,
) -> bool:
    exprs = {c: _bounded(column_for(c), targets[c], raise_only=raise_only) for c in CATEGORIES}
    values: dict[Any, Any] = {column_for(c): exprs[c] for c in CATEGORIES}
    values[UserPoints.total_points] = exprs["mining"] + exprs["task"] + exprs["social"] + exprs["referral"]
    values[UserPoints.updated_at] = now
    conditions = [UserPoints.user_id == user_id]
    if expected is not None:
        conditions.extend(column_for(c) == expected[c] for c in CATEGORIES)
    result = await db.execute(
        update(UserPoints)
        .where(*conditions)
        .values(values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def raise_subtotals(db: AsyncSession, user_id: str, targets: dict[str, int], now: datetime) -> bool:
    """Raise each subtotal below its target up to it; never lowers anything."""
    await get_or_create_points(db, user_id)
    return await _move_towards(db, user_id, targets, now, raise_only=True)


async def lower_subtotals(
    db: AsyncSession,
    user_id: str,
    targets: dict[str, int],
    now: datetime,
    expected: dict[str, int] | None = None,
) -> bool:
    """Lower each subtotal above its target down to it; never raises anything.

    With ``expected``, the row is only touched while its subtotals still equal
    those values. Returns False when nothing matched.
    """
    return await _move_towards(db, user_id, targets, now, raise_only=False, expected=expected)
