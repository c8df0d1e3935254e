"""Points and mining session API router."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from arxledger.auth.dependencies import get_current_user
from arxledger.clock import utcnow
from arxledger.database import get_session
from arxledger.db.models import User
from arxledger.ledger import balance, crediting, schemas, sessions
from arxledger.ledger.errors import ValidationError

router = APIRouter(prefix="/api/v1", tags=["Points"])


# ---------------------------------------------------------------------------
# POST /points/credit: credit a mining session, task or social award
# ---------------------------------------------------------------------------
@router.post("/points/credit", response_model=schemas.CreditResponse)
async def credit_points(
    body: schemas.CreditRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> schemas.CreditResponse:
    """Credit points to the caller. Mining awards are bounded by the session itself."""
    now = utcnow()
    if body.type == "mining":
        if not body.session_id:
            msg = "session_id is required for mining credits"
            raise ValidationError(msg)
        outcome = await crediting.credit_session(db, body.session_id, user.id, body.amount, now)
    else:
        outcome = await crediting.credit_activity(db, user.id, body.type, body.amount, now)

    return schemas.CreditResponse(
        status=outcome.status,
        points=outcome.awarded,
        session_id=outcome.session_id,
        balance=schemas.BalanceOut.from_subtotals(outcome.balance),
    )


# ---------------------------------------------------------------------------
# GET /points/me: caller's balance
# ---------------------------------------------------------------------------
@router.get("/points/me", response_model=schemas.BalanceOut)
async def my_points(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> schemas.BalanceOut:
    points = await balance.get_points(db, user.id)
    return schemas.BalanceOut.from_subtotals(balance.subtotals(points))


# ---------------------------------------------------------------------------
# POST /mining/sessions: start mining
# ---------------------------------------------------------------------------
@router.post("/mining/sessions", response_model=schemas.StartSessionResponse)
async def start_mining(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> schemas.StartSessionResponse:
    """Open a session, or return the one already running."""
    session, created = await sessions.start_session(db, user.id, utcnow())
    return schemas.StartSessionResponse(created=created, session=schemas.SessionOut.model_validate(session))


# ---------------------------------------------------------------------------
# GET /mining/sessions/active
# ---------------------------------------------------------------------------
@router.get("/mining/sessions/active", response_model=schemas.ActiveSessionResponse)
async def active_session(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> schemas.ActiveSessionResponse:
    session = await sessions.get_active_session(db, user.id)
    if session is None:
        return schemas.ActiveSessionResponse()
    return schemas.ActiveSessionResponse(session=schemas.SessionOut.model_validate(session))
