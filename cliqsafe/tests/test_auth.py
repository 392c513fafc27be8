"""
Tests for JWT sessions and the session dependencies.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import jwt
import pytest
from fastapi import HTTPException

from cliqsafe import config
from cliqsafe.auth import create_jwt, decode_jwt, get_current_session, get_optional_session

pytestmark = pytest.mark.asyncio(loop_scope="session")


class TestJWT:
    """Test JWT creation and validation."""

    def test_round_trip_to_session(self):
        user_id = uuid4()
        session = decode_jwt(create_jwt(user_id))

        assert session.user_id == user_id
        assert session.expires_at > session.issued_at

    def test_expiry_follows_settings(self):
        now = datetime.now(UTC).replace(microsecond=0)
        session = decode_jwt(create_jwt(uuid4(), now=now))
        assert session.expires_at - session.issued_at == timedelta(hours=config.settings.JWT_EXPIRY_HOURS)

    def test_decode_expired_jwt(self):
        payload = {
            "sub": str(uuid4()),
            "exp": datetime.now(UTC) - timedelta(hours=1),
            "iat": datetime.now(UTC) - timedelta(hours=2),
        }
        token = jwt.encode(payload, config.settings.JWT_SECRET, algorithm=config.settings.JWT_ALGORITHM)

        with pytest.raises(HTTPException) as exc_info:
            decode_jwt(token)

        assert exc_info.value.status_code == 401
        assert "expired" in exc_info.value.detail.lower()

    def test_decode_invalid_jwt(self):
        with pytest.raises(HTTPException) as exc_info:
            decode_jwt("invalid.token.here")
        assert exc_info.value.status_code == 401

    def test_wrong_secret_rejected(self):
        token = jwt.encode(
            {"sub": str(uuid4()), "exp": datetime.now(UTC) + timedelta(hours=1), "iat": datetime.now(UTC)},
            "some-other-secret",
            algorithm="HS256",
        )
        with pytest.raises(HTTPException):
            decode_jwt(token)

    def test_missing_subject_rejected(self):
        token = jwt.encode(
            {"exp": datetime.now(UTC) + timedelta(hours=1), "iat": datetime.now(UTC)},
            config.settings.JWT_SECRET,
            algorithm=config.settings.JWT_ALGORITHM,
        )
        with pytest.raises(HTTPException):
            decode_jwt(token)


class TestSessionDependencies:
    async def test_current_session_requires_cookie(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_session(None)
        assert exc_info.value.status_code == 401

    async def test_optional_session_absent(self):
        assert await get_optional_session(None) is None

    async def test_optional_session_present(self):
        user_id = uuid4()
        session = await get_optional_session(create_jwt(user_id))
        assert session.user_id == user_id

    async def test_optional_session_rejects_garbage(self):
        with pytest.raises(HTTPException):
            await get_optional_session("garbage")
