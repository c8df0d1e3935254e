"""Tests for JWT verification."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from arxledger.auth.jwt import create_access_token, peek_subject, verify_token
from arxledger.config import get_settings


def _encode(payload: dict) -> str:
    settings = get_settings()
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


class TestVerifyToken:
    def test_create_and_verify(self):
        payload = verify_token(create_access_token("user-1"))
        assert payload["sub"] == "user-1"
        assert payload["aud"] == "authenticated"

    def test_expired_rejected(self):
        token = create_access_token("user-1", expires_in=timedelta(seconds=-1))
        with pytest.raises(jwt.InvalidTokenError, match="expired"):
            verify_token(token)

    def test_wrong_secret_rejected(self):
        token = jwt.encode(
            {"sub": "user-1", "aud": "authenticated", "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
            "some-other-secret-that-is-long-enough",
            algorithm="HS256",
        )
        with pytest.raises(jwt.InvalidTokenError):
            verify_token(token)

    def test_wrong_audience_rejected(self):
        token = _encode({"sub": "user-1", "aud": "anon", "exp": datetime.now(timezone.utc) + timedelta(hours=1)})
        with pytest.raises(jwt.InvalidTokenError):
            verify_token(token)

    def test_subject_required(self):
        token = _encode({"aud": "authenticated", "exp": datetime.now(timezone.utc) + timedelta(hours=1)})
        with pytest.raises(jwt.InvalidTokenError):
            verify_token(token)


class TestPeekSubject:
    def test_valid(self):
        assert peek_subject(create_access_token("user-9")) == "user-9"

    def test_garbage(self):
        assert peek_subject("not-a-token") is None
