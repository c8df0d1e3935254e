"""Battle settlement and its effect on balances and proofs."""

from __future__ import annotations

from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy import select

from arxledger.arena import settlement
from arxledger.arena.staking import get_battle, place_stake
from arxledger.clock import as_utc
from arxledger.db.models import ArenaBoost, ArenaEarning, ArenaMember
from arxledger.ledger import audit, balance
from arxledger.ledger.errors import ValidationError
from arxledger.ledger.reconciliation import reconcile_user

pytestmark = pytest.mark.asyncio


@pytest_asyncio.fixture
async def staked_battle(db_session, make_user, add_battle, add_proofs, now):
    """Two stakers on a (100 + 300), one on b (400), prize 200, all at the opening bell."""
    small = await make_user(mining=100)
    large = await make_user(task=300)
    loser = await make_user(mining=400)
    await add_proofs(small, sessions=(100,))
    await add_proofs(large, tasks=(("completed", 300),))
    await add_proofs(loser, sessions=(400,))

    battle_id = await add_battle(now, now + timedelta(hours=10), prize_pool=200)
    await place_stake(db_session, small, battle_id, "a", 100, now)
    await place_stake(db_session, large, battle_id, "a", 300, now)
    await place_stake(db_session, loser, battle_id, "b", 400, now)
    return {"battle_id": battle_id, "small": small, "large": large, "loser": loser}


async def _balance(session_factory, user_id: str) -> dict[str, int]:
    async with session_factory() as db:
        return balance.subtotals(await balance.get_points(db, user_id))


async def test_winners_split_the_whole_pool(db_session, session_factory, staked_battle, now) -> None:
    settle_at = now + timedelta(hours=10)
    result = await settlement.settle_battle(db_session, staked_battle["battle_id"], settle_at)

    assert result.status == settlement.SETTLED
    assert result.winner_side == "a"
    assert result.total_pool == 1000
    assert result.total_distributed == 1000
    assert (result.winners, result.losers) == (2, 1)

    assert await _balance(session_factory, staked_battle["small"]) == {
        "mining": 0,
        "task": 0,
        "social": 250,
        "referral": 0,
        "total": 250,
    }
    assert (await _balance(session_factory, staked_battle["large"]))["social"] == 750
    assert (await _balance(session_factory, staked_battle["loser"]))["total"] == 0

    async with session_factory() as db:
        battle = await get_battle(db, staked_battle["battle_id"])
        earnings = list(await db.scalars(select(ArenaEarning)))
        boosts = list(await db.scalars(select(ArenaBoost)))
        members = {m.user_id: m for m in await db.scalars(select(ArenaMember))}

    assert battle.settled_at is not None
    assert battle.is_active is False
    assert battle.total_rewards_distributed == 1000
    assert len(earnings) == 3
    assert sum(e.total_earned for e in earnings) == 1000
    assert {b.user_id for b in boosts} == {staked_battle["small"], staked_battle["large"]}
    assert all(b.boost_percentage == 25 for b in boosts)
    assert all(as_utc(b.expires_at) == settle_at + timedelta(days=7) for b in boosts)
    assert members[staked_battle["small"]].current_win_streak == 1
    assert members[staked_battle["small"]].total_wins == 1
    assert members[staked_battle["loser"]].current_win_streak == 0


async def test_second_settlement_pays_nothing(db_session, session_factory, staked_battle, now) -> None:
    await settlement.settle_battle(db_session, staked_battle["battle_id"], now)
    again = await settlement.settle_battle(db_session, staked_battle["battle_id"], now + timedelta(minutes=1))

    assert again.status == settlement.ALREADY_SETTLED
    assert (await _balance(session_factory, staked_battle["large"]))["social"] == 750


async def test_explicit_winner_overrides_power(db_session, session_factory, staked_battle, now) -> None:
    result = await settlement.settle_battle(db_session, staked_battle["battle_id"], now, winner_side="b")

    assert result.winner_side == "b"
    assert (await _balance(session_factory, staked_battle["loser"]))["social"] == 1000
    assert (await _balance(session_factory, staked_battle["small"]))["total"] == 0


async def test_unknown_winner_side_is_rejected(db_session, staked_battle, now) -> None:
    with pytest.raises(ValidationError):
        await settlement.settle_battle(db_session, staked_battle["battle_id"], now, winner_side="c")


async def test_battle_without_stakes(db_session, add_battle, now) -> None:
    battle_id = await add_battle(now - timedelta(hours=10), now, prize_pool=500)

    result = await settlement.settle_battle(db_session, battle_id, now)

    assert result.status == settlement.NO_WINNER
    assert result.total_distributed == 0
    assert (await get_battle(db_session, battle_id)).settled_at is not None


async def test_settled_balances_reconcile_cleanly(db_session, staked_battle, now) -> None:
    """Stake debits and earnings are proof rows, so reconciliation finds nothing to do."""
    await settlement.settle_battle(db_session, staked_battle["battle_id"], now)

    for key in ("small", "large", "loser"):
        result = await reconcile_user(db_session, staked_battle[key], now)
        assert result.action == audit.ACTION_NONE, key
        assert result.diffs["total"] == 0, key


async def test_ended_battles_are_settled_in_one_pass(
    db_session, session_factory, staked_battle, add_battle, now
) -> None:
    running = await add_battle(now, now + timedelta(hours=20))
    paused = await add_battle(now - timedelta(hours=5), now - timedelta(hours=1), active=False)

    early = await settlement.settle_ended_battles(db_session, now + timedelta(hours=5))
    batch = await settlement.settle_ended_battles(db_session, now + timedelta(hours=11))
    again = await settlement.settle_ended_battles(db_session, now + timedelta(hours=12))

    assert early.processed == 0
    assert (batch.processed, batch.settled, batch.failed) == (1, 1, 0)
    assert batch.total_distributed == 1000
    assert batch.results[0].battle_id == staked_battle["battle_id"]
    assert again.processed == 0
    assert (await _balance(session_factory, staked_battle["large"]))["social"] == 750
    for battle_id in (running, paused):
        assert (await get_battle(db_session, battle_id)).settled_at is None


async def test_ended_battle_without_stakes_closes_with_no_winner(db_session, add_battle, now) -> None:
    battle_id = await add_battle(now - timedelta(hours=10), now - timedelta(hours=1), prize_pool=500)

    batch = await settlement.settle_ended_battles(db_session, now)

    assert batch.settled == 1
    assert batch.results[0].status == settlement.NO_WINNER
    assert batch.total_distributed == 0
    battle = await get_battle(db_session, battle_id)
    assert battle.settled_at is not None
    assert battle.is_active is False
