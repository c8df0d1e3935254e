"""Pydantic schemas for the arena API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from arxledger.ledger.schemas import BalanceOut


class StakeRequest(BaseModel):
    side: str = Field(pattern="^[abc]$")
    amount: int = Field(gt=0)


class VoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    battle_id: str
    side: str
    power_spent: int
    early_stake_multiplier: float
    debited_mining: int
    debited_task: int
    debited_social: int
    debited_referral: int


class StakeResponse(BaseModel):
    success: bool = True
    vote: VoteOut
    balance: BalanceOut


class QuoteResponse(BaseModel):
    battle_id: str
    side: str
    amount: int
    multiplier: float
    projected_payout: int


class SettleRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    winner_side: str | None = Field(default=None, alias="winnerSide", pattern="^[abc]$")


class PayoutOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    vote_id: str
    user_id: str
    stake: int
    is_winner: bool
    pool_share: int
    streak_bonus: int
    total: int


class SettleResponse(BaseModel):
    battle_id: str
    status: str
    winner_side: str | None = None
    total_pool: int = 0
    total_points_delta: int = 0
    winners: int = 0
    losers: int = 0
    error: str | None = None
    results: list[PayoutOut] = []


class SettleEndedRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    batch_size: int | None = Field(default=None, alias="batchSize", ge=1)


class SettleEndedResponse(BaseModel):
    processed: int
    settled: int
    failed: int
    total_points_delta: int
    results: list[SettleResponse] = []
