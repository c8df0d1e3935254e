"""Stake placement: debits a user's balance into a battle pool."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from arxledger.arena.settlement import side_powers
from arxledger.clock import as_utc
from arxledger.db.models import ArenaBattle, ArenaVote
from arxledger.ledger import balance
from arxledger.ledger.errors import BattleNotFound, StakeRejected, TransientStoreError

logger = logging.getLogger(__name__)

_POWER_COLUMNS = {
    "a": ArenaBattle.side_a_power,
    "b": ArenaBattle.side_b_power,
    "c": ArenaBattle.side_c_power,
}


def early_stake_multiplier(starts_at: datetime, ends_at: datetime, now: datetime) -> float:
    """1.5x at the opening bell, falling linearly to 1.0x at the close."""
    window = (ends_at - starts_at).total_seconds()
    if window <= 0:
        return 1.0
    progress = min(max((now - starts_at).total_seconds() / window, 0.0), 1.0)
    return round(1.5 - 0.5 * progress, 4)


async def get_battle(db: AsyncSession, battle_id: str) -> ArenaBattle:
    battle = (
        await db.execute(
            select(ArenaBattle).where(ArenaBattle.id == battle_id).execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if battle is None:
        raise BattleNotFound(battle_id)
    return battle


async def place_stake(
    db: AsyncSession,
    user_id: str,
    battle_id: str,
    side: str,
    amount: int,
    now: datetime,
) -> tuple[ArenaVote, dict[str, int]]:
    """Debit ``amount`` from the user's subtotals and record the vote.

    Returns the vote and the caller's balance after the debit.
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        msg = "stake amount must be a positive integer"
        raise StakeRejected(msg)

    battle = await get_battle(db, battle_id)
    if not battle.is_active or battle.settled_at is not None:
        msg = "battle is not active"
        raise StakeRejected(msg)
    if now >= as_utc(battle.ends_at):
        msg = "battle has ended"
        raise StakeRejected(msg)
    if side not in side_powers(battle):
        msg = f"invalid side: {side}"
        raise StakeRejected(msg)

    current = balance.subtotals(await balance.get_points(db, user_id))
    if amount > current["total"]:
        msg = "insufficient balance"
        raise StakeRejected(msg)
    try:
        split = balance.split_debit(current, amount)
    except ValueError as exc:
        raise StakeRejected(str(exc)) from exc

    multiplier = early_stake_multiplier(as_utc(battle.starts_at), as_utc(battle.ends_at), now)
    power = _POWER_COLUMNS[side]
    try:
        if not await balance.apply_debit(db, user_id, split, now):
            await db.rollback()
            msg = "insufficient balance"
            raise StakeRejected(msg)
        vote = ArenaVote(
            battle_id=battle_id,
            user_id=user_id,
            side=side,
            power_spent=amount,
            early_stake_multiplier=multiplier,
            debited_mining=split["mining"],
            debited_task=split["task"],
            debited_social=split["social"],
            debited_referral=split["referral"],
            created_at=now,
        )
        db.add(vote)
        await db.execute(
            update(ArenaBattle)
            .where(ArenaBattle.id == battle_id)
            .values({power: power + amount})
            .execution_options(synchronize_session=False)
        )
        await db.flush()
        after = balance.subtotals(await balance.get_points(db, user_id))
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Failed to place stake for user %s on battle %s", user_id, battle_id)
        raise TransientStoreError(f"battle {battle_id}: stake write failed") from exc

    logger.info(
        "User %s staked %d on side %s of battle %s (multiplier=%.2f, split=%s)",
        user_id, amount, side, battle_id, multiplier, split,
    )
    return vote, after
