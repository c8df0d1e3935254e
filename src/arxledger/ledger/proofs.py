"""Proof totals: what a user's balance should be, computed from source rows.

Each category is summed straight from its proof table. Arena stakes are proof
events too: earnings count towards social, and each stake's recorded debit is
taken back out of the category that paid for it.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from arxledger.config import Settings, get_settings
from arxledger.db.models import (
    ArenaEarning,
    ArenaVote,
    DailyCheckin,
    MiningSession,
    Referral,
    SocialSubmission,
    UserTask,
)
from arxledger.ledger.errors import Inconclusive


@dataclass(frozen=True)
class ProofTotals:
    mining: int
    task: int
    social: int
    referral: int
    checkin: int
    has_proof: bool

    @property
    def total(self) -> int:
        return self.mining + self.task + self.social + self.referral

    def as_targets(self) -> dict[str, int]:
        return {"mining": self.mining, "task": self.task, "social": self.social, "referral": self.referral}


def _sum(column):  # type: ignore[no-untyped-def]
    return func.coalesce(func.sum(column), 0)


async def compute_proof_totals(
    db: AsyncSession,
    user_id: str,
    settings: Settings | None = None,
) -> ProofTotals:
    """Sum every proof table for one user."""
    s = settings or get_settings()

    mining = await db.scalar(select(_sum(MiningSession.raw_points)).where(MiningSession.user_id == user_id))
    task = await db.scalar(
        select(_sum(UserTask.points_awarded)).where(UserTask.user_id == user_id, UserTask.status == "completed")
    )
    submissions = await db.scalar(
        select(_sum(SocialSubmission.points_awarded)).where(
            SocialSubmission.user_id == user_id, SocialSubmission.status == "approved"
        )
    )
    checkins = await db.scalar(select(_sum(DailyCheckin.points_awarded)).where(DailyCheckin.user_id == user_id))
    referral = await db.scalar(
        select(_sum(func.coalesce(Referral.points_awarded, s.referral_default_points))).where(
            Referral.referrer_id == user_id
        )
    )
    arena_earned = await db.scalar(select(_sum(ArenaEarning.total_earned)).where(ArenaEarning.user_id == user_id))
    debits = (
        await db.execute(
            select(
                _sum(ArenaVote.debited_mining),
                _sum(ArenaVote.debited_task),
                _sum(ArenaVote.debited_social),
                _sum(ArenaVote.debited_referral),
            ).where(ArenaVote.user_id == user_id)
        )
    ).one()

    raw_mining = int(mining or 0)
    raw_task = int(task or 0)
    raw_checkin = int(checkins or 0)
    raw_social = int(submissions or 0) + raw_checkin + int(arena_earned or 0)
    raw_referral = int(referral or 0)

    return ProofTotals(
        mining=max(raw_mining - int(debits[0]), 0),
        task=max(raw_task - int(debits[1]), 0),
        social=max(raw_social - int(debits[2]), 0),
        referral=max(raw_referral - int(debits[3]), 0),
        checkin=raw_checkin,
        has_proof=any((raw_mining, raw_task, raw_social, raw_referral)),
    )


def require_proof(proof: ProofTotals, user_id: str) -> ProofTotals:
    """Raise Inconclusive when the user has no proof rows at all."""
    if not proof.has_proof:
        raise Inconclusive(user_id, "inconclusive: no proof rows, balance treated as manually seeded")
    return proof


def mining_ratio(stored_mining: int, proven_mining: int) -> float:
    """stored / proven mining, with the zero cases defined."""
    if proven_mining <= 0:
        return float("inf") if stored_mining > 0 else 1.0
    return stored_mining / proven_mining
