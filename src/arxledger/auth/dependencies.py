"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from arxledger.auth.jwt import verify_token
from arxledger.database import get_session
from arxledger.db.models import User, UserRole

_bearer = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> User:
    """
    Extract and verify JWT, return User model.

    Raises 401/403 on failure.
    """
    try:
        payload = verify_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    user = await db.get(User, str(payload["sub"]))
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    if user.is_banned:
        raise HTTPException(status_code=403, detail="Account is banned")
    return user


async def is_admin(db: AsyncSession, user_id: str) -> bool:
    role = await db.scalar(
        select(UserRole.id).where(UserRole.user_id == user_id, UserRole.role == "admin").limit(1)
    )
    return role is not None


async def require_admin(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> User:
    """Same as get_current_user but additionally requires the admin role."""
    if not await is_admin(db, user.id):
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
