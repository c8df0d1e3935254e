"""
HS256 JWT verification.

Tokens are issued by the external auth provider and signed with a shared
secret. The ``sub`` claim is the user's UUID and ``aud`` is ``authenticated``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from arxledger.config import get_settings


def create_access_token(user_id: str, expires_in: timedelta = timedelta(hours=1)) -> str:
    """
    Mint a token in the provider's format.

    Used by tests and local tooling; production tokens come from the provider.

    Args:
        user_id: The user's UUID.
        expires_in: Token lifetime.

    Returns:
        Encoded JWT string.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": user_id,
        "iat": now,
        "exp": now + expires_in,
        "role": "authenticated",
    }
    if settings.jwt_audience:
        payload["aud"] = settings.jwt_audience
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict[str, Any]:
    """
    Verify and decode a JWT token.

    Args:
        token: The encoded JWT string.

    Returns:
        Decoded payload dictionary.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or has no subject.
    """
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options={"require": ["exp", "sub"], "verify_aud": bool(settings.jwt_audience)},
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    return payload


def peek_subject(token: str) -> str | None:
    """Return the verified ``sub`` claim, or None if the token does not verify."""
    try:
        return str(verify_token(token)["sub"])
    except jwt.InvalidTokenError:
        return None
