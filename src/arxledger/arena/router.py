"""Arena API router: staking, quotes and admin settlement."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from arxledger.arena import schemas
from arxledger.arena.settlement import SettlementResult, quote, settle_battle, settle_ended_battles
from arxledger.arena.staking import get_battle, place_stake
from arxledger.auth.dependencies import get_current_user, require_admin
from arxledger.clock import utcnow
from arxledger.database import get_session
from arxledger.db.models import User
from arxledger.ledger.schemas import BalanceOut

router = APIRouter(prefix="/api/v1/arena", tags=["Arena"])
admin_router = APIRouter(prefix="/api/v1/admin/arena", tags=["Admin"])


@router.post("/battles/{battle_id}/stake", response_model=schemas.StakeResponse)
async def stake(
    battle_id: str,
    body: schemas.StakeRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> schemas.StakeResponse:
    """Stake points on one side of a battle."""
    vote, after = await place_stake(db, user.id, battle_id, body.side, body.amount, utcnow())
    return schemas.StakeResponse(
        vote=schemas.VoteOut.model_validate(vote),
        balance=BalanceOut.from_subtotals(after),
    )


@router.get("/battles/{battle_id}/quote", response_model=schemas.QuoteResponse)
async def stake_quote(
    battle_id: str,
    side: str = Query(..., pattern="^[abc]$"),
    amount: int = Query(..., gt=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> schemas.QuoteResponse:
    """Advertised multiplier and projected payout for a hypothetical stake."""
    battle = await get_battle(db, battle_id)
    multiplier, projected = quote(battle, side, amount)
    return schemas.QuoteResponse(
        battle_id=battle_id,
        side=side,
        amount=amount,
        multiplier=round(multiplier, 4),
        projected_payout=projected,
    )


def _settle_response(result: SettlementResult) -> schemas.SettleResponse:
    return schemas.SettleResponse(
        battle_id=result.battle_id,
        status=result.status,
        winner_side=result.winner_side,
        total_pool=result.total_pool,
        total_points_delta=result.total_distributed,
        winners=result.winners,
        losers=result.losers,
        error=result.error,
        results=[schemas.PayoutOut.model_validate(p) for p in result.payouts],
    )


@admin_router.post("/battles/settle-ended", response_model=schemas.SettleEndedResponse)
async def settle_ended(
    body: schemas.SettleEndedRequest | None = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> schemas.SettleEndedResponse:
    """Settle every active battle whose window has closed, oldest first."""
    body = body or schemas.SettleEndedRequest()
    batch = await settle_ended_battles(db, utcnow(), limit=body.batch_size)
    return schemas.SettleEndedResponse(
        processed=batch.processed,
        settled=batch.settled,
        failed=batch.failed,
        total_points_delta=batch.total_distributed,
        results=[_settle_response(r) for r in batch.results],
    )


@admin_router.post("/battles/{battle_id}/settle", response_model=schemas.SettleResponse)
async def settle(
    battle_id: str,
    body: schemas.SettleRequest | None = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> schemas.SettleResponse:
    """Resolve a battle and distribute its pool. Repeat calls pay nothing."""
    body = body or schemas.SettleRequest()
    result = await settle_battle(db, battle_id, utcnow(), winner_side=body.winner_side)
    return _settle_response(result)
