"""Arena pool settlement.

Winners split the whole pool (prize plus every stake) in proportion to their
early-weighted stakes; streak bonuses come out of the same pool and the
running total is capped so the payout can never exceed it. Losers forfeit
their stake. Settlement is a single transaction opened by a CAS on
``arena_battles.settled_at``, so a battle pays out at most once.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from arxledger.config import Settings, get_settings
from arxledger.db.models import ArenaBattle, ArenaBoost, ArenaEarning, ArenaMember, ArenaVote
from arxledger.ledger import balance
from arxledger.ledger.errors import BattleNotFound, TransientStoreError, ValidationError
from arxledger.ledger.sweeper import clamp_batch_size

logger = logging.getLogger(__name__)

SIDES = ("a", "b", "c")

# (minimum win streak, bonus fraction of net profit), highest first
STREAK_BONUS_TIERS: tuple[tuple[int, float], ...] = ((10, 1.0), (5, 0.5), (3, 0.25))

SETTLED = "settled"
ALREADY_SETTLED = "already_settled"
NO_WINNER = "no_winner"
FAILED = "failed"


@dataclass(frozen=True)
class StakeInput:
    vote_id: str
    user_id: str
    side: str
    stake: int
    multiplier: float = 1.0
    win_streak: int = 0  # streak before this battle


@dataclass(frozen=True)
class Payout:
    vote_id: str
    user_id: str
    stake: int
    is_winner: bool
    pool_share: int = 0
    streak_bonus: int = 0
    total: int = 0
    new_streak: int = 0


@dataclass
class SettlementResult:
    battle_id: str
    status: str
    winner_side: str | None = None
    total_pool: int = 0
    total_distributed: int = 0
    winners: int = 0
    losers: int = 0
    payouts: list[Payout] = field(default_factory=list)
    error: str | None = None


@dataclass
class SettlementBatch:
    processed: int = 0
    settled: int = 0
    failed: int = 0
    total_distributed: int = 0
    results: list[SettlementResult] = field(default_factory=list)


def streak_bonus_rate(streak: int) -> float:
    for minimum, rate in STREAK_BONUS_TIERS:
        if streak >= minimum:
            return rate
    return 0.0


def pick_winner(powers: dict[str, int]) -> str | None:
    """Side with the most staked power; ties go to the earlier side."""
    best: str | None = None
    for side in SIDES:
        power = powers.get(side, 0)
        if power > 0 and (best is None or power > powers[best]):
            best = side
    return best


def pool_multiplier(my_power: int, their_power: int) -> float:
    """Advertised payout multiplier for a side: 2x for the favourite up to 5x for the underdog."""
    if my_power <= 0 or my_power < their_power:
        return 5.0
    return min(2 + 3 * their_power / my_power, 5.0)


def compute_payouts(stakes: list[StakeInput], winner_side: str, prize_pool: int) -> list[Payout]:
    """Split the total pool among winning stakes. Pure; sum(total) <= prize_pool + sum(stakes)."""
    total_pool = prize_pool + sum(s.stake for s in stakes)
    winners = [s for s in stakes if s.side == winner_side]
    total_weight = sum(s.stake * s.multiplier for s in winners)

    payouts: list[Payout] = []
    remaining = total_pool
    for s in stakes:
        if s.side != winner_side or total_weight <= 0:
            payouts.append(Payout(s.vote_id, s.user_id, s.stake, is_winner=False, new_streak=0))
            continue
        # drop float noise before flooring
        base = round(s.stake * s.multiplier * total_pool / total_weight, 6)
        new_streak = s.win_streak + 1
        bonus = max(base - s.stake, 0) * streak_bonus_rate(new_streak)
        reward = min(math.floor(base + bonus), remaining)
        share = min(math.floor(base), reward)
        remaining -= reward
        payouts.append(
            Payout(
                s.vote_id,
                s.user_id,
                s.stake,
                is_winner=True,
                pool_share=share,
                streak_bonus=reward - share,
                total=reward,
                new_streak=new_streak,
            )
        )
    return payouts


def quote(battle: ArenaBattle, side: str, amount: int) -> tuple[float, int]:
    """Multiplier and projected payout if ``amount`` were staked on ``side`` now."""
    powers = side_powers(battle)
    if side not in powers:
        msg = f"invalid side: {side}"
        raise ValidationError(msg)
    mine = powers[side] + amount
    theirs = sum(p for s, p in powers.items() if s != side)
    multiplier = pool_multiplier(mine, theirs)
    return multiplier, math.floor(amount * multiplier)


def side_powers(battle: ArenaBattle) -> dict[str, int]:
    powers = {"a": int(battle.side_a_power or 0), "b": int(battle.side_b_power or 0)}
    if battle.side_c_name:
        powers["c"] = int(battle.side_c_power or 0)
    return powers


async def settle_battle(
    db: AsyncSession,
    battle_id: str,
    now: datetime,
    winner_side: str | None = None,
    settings: Settings | None = None,
) -> SettlementResult:
    """Resolve a battle and pay its winners exactly once."""
    s = settings or get_settings()
    battle = (
        await db.execute(
            select(ArenaBattle).where(ArenaBattle.id == battle_id).execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if battle is None:
        raise BattleNotFound(battle_id)
    if battle.settled_at is not None:
        return SettlementResult(battle_id, ALREADY_SETTLED, winner_side=battle.winner_side)

    powers = side_powers(battle)
    if winner_side is not None and winner_side not in powers:
        msg = f"invalid winner side: {winner_side}"
        raise ValidationError(msg)
    winner = winner_side or pick_winner(powers)

    try:
        won = await db.execute(
            update(ArenaBattle)
            .where(ArenaBattle.id == battle_id, ArenaBattle.settled_at.is_(None))
            .values(settled_at=now, is_active=False, winner_side=winner)
            .execution_options(synchronize_session=False)
        )
        if won.rowcount != 1:
            await db.rollback()
            logger.info("Battle %s was settled by another request", battle_id)
            return SettlementResult(battle_id, ALREADY_SETTLED)

        result = await _pay_out(db, battle_id, int(battle.prize_pool or 0), winner, now, s)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Failed to settle battle %s", battle_id)
        raise TransientStoreError(f"battle {battle_id}: settlement failed") from exc

    logger.info(
        "Settled battle %s: winner=%s pool=%d distributed=%d winners=%d losers=%d",
        battle_id, winner, result.total_pool, result.total_distributed, result.winners, result.losers,
    )
    return result


async def settle_ended_battles(
    db: AsyncSession,
    now: datetime,
    limit: int | None = None,
    settings: Settings | None = None,
) -> SettlementBatch:
    """Settle active battles whose window has closed, oldest first.

    Each battle goes through ``settle_battle``, so a battle settled by a
    concurrent caller is reported as already settled and pays nothing twice.
    """
    s = settings or get_settings()
    battle_ids = list(
        await db.scalars(
            select(ArenaBattle.id)
            .where(
                ArenaBattle.is_active.is_(True),
                ArenaBattle.settled_at.is_(None),
                ArenaBattle.ends_at < now,
            )
            .order_by(ArenaBattle.ends_at.asc())
            .limit(clamp_batch_size(limit, s))
        )
    )

    batch = SettlementBatch()
    for battle_id in battle_ids:
        batch.processed += 1
        try:
            result = await settle_battle(db, battle_id, now, settings=s)
        except (TransientStoreError, BattleNotFound) as exc:
            batch.failed += 1
            batch.results.append(SettlementResult(battle_id, FAILED, error=str(exc)))
            continue
        batch.results.append(result)
        if result.status in (SETTLED, NO_WINNER):
            batch.settled += 1
            batch.total_distributed += result.total_distributed

    if battle_ids:
        logger.info(
            "Settled ended battles: processed=%d settled=%d failed=%d distributed=%d",
            batch.processed, batch.settled, batch.failed, batch.total_distributed,
        )
    return batch


async def _pay_out(
    db: AsyncSession,
    battle_id: str,
    prize_pool: int,
    winner: str | None,
    now: datetime,
    settings: Settings,
) -> SettlementResult:
    votes = list(
        (await db.scalars(select(ArenaVote).where(ArenaVote.battle_id == battle_id).order_by(ArenaVote.created_at)))
    )
    user_ids = {v.user_id for v in votes}
    members: dict[str, ArenaMember] = {}
    if user_ids:
        rows = await db.scalars(select(ArenaMember).where(ArenaMember.user_id.in_(user_ids)))
        members = {m.user_id: m for m in rows}

    stakes = [
        StakeInput(
            vote_id=v.id,
            user_id=v.user_id,
            side=v.side,
            stake=int(v.power_spent),
            multiplier=float(v.early_stake_multiplier or 1.0),
            win_streak=members[v.user_id].current_win_streak if v.user_id in members else 0,
        )
        for v in votes
    ]
    total_pool = prize_pool + sum(st.stake for st in stakes)
    if winner is None:
        # Nobody staked: nothing to pay, nothing to forfeit.
        return SettlementResult(battle_id, NO_WINNER, total_pool=total_pool)

    payouts = compute_payouts(stakes, winner, prize_pool)
    boost_until = now + timedelta(days=settings.arena_winner_boost_days)
    winning_users = {p.user_id for p in payouts if p.is_winner}
    rewarded: set[str] = set()
    for p in payouts:
        db.add(
            ArenaEarning(
                battle_id=battle_id,
                vote_id=p.vote_id,
                user_id=p.user_id,
                stake_amount=p.stake,
                pool_share_earned=p.pool_share,
                streak_bonus=p.streak_bonus,
                total_earned=p.total,
                is_winner=p.is_winner,
                created_at=now,
            )
        )
        member = members.get(p.user_id)
        if member is None:
            member = ArenaMember(user_id=p.user_id, current_win_streak=0, best_win_streak=0, total_wins=0)
            db.add(member)
            members[p.user_id] = member
        if p.total > 0:
            await balance.increment_points(db, p.user_id, "social", p.total, now)
        if p.user_id in winning_users:
            if p.user_id in rewarded:
                continue
            rewarded.add(p.user_id)
            member.current_win_streak = p.new_streak
            member.best_win_streak = max(member.best_win_streak, p.new_streak)
            member.total_wins += 1
            db.add(
                ArenaBoost(
                    user_id=p.user_id,
                    battle_id=battle_id,
                    boost_percentage=settings.arena_winner_boost_percentage,
                    expires_at=boost_until,
                )
            )
        else:
            member.current_win_streak = 0

    distributed = sum(p.total for p in payouts)
    await db.execute(
        update(ArenaBattle)
        .where(ArenaBattle.id == battle_id)
        .values(total_rewards_distributed=distributed)
        .execution_options(synchronize_session=False)
    )
    await db.flush()
    return SettlementResult(
        battle_id,
        SETTLED,
        winner_side=winner,
        total_pool=total_pool,
        total_distributed=distributed,
        winners=sum(1 for p in payouts if p.is_winner),
        losers=sum(1 for p in payouts if not p.is_winner),
        payouts=payouts,
    )
