"""
Session handling for cliqsafe.

JWT issuance and the FastAPI dependencies that turn the session cookie
into an explicit Session value.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Annotated
from uuid import UUID

import jwt
from fastapi import Cookie, HTTPException, Response, status

from cliqsafe import config
from cliqsafe.db import system_conn
from cliqsafe.models.auth import Session
from cliqsafe.models.user import User
from cliqsafe.repos import user_repo

SESSION_COOKIE = "session"


def create_jwt(user_id: UUID, now: datetime | None = None) -> str:
    """
    Create a JWT for a user session.

    Args:
        user_id: User UUID to encode in the token
        now: Issue time (defaults to current UTC time)

    Returns:
        Signed JWT string
    """
    now = now or datetime.now(UTC)
    payload = {
        "sub": str(user_id),
        "exp": now + timedelta(hours=config.settings.JWT_EXPIRY_HOURS),
        "iat": now,
    }
    return jwt.encode(payload, config.settings.JWT_SECRET, algorithm=config.settings.JWT_ALGORITHM)


def decode_jwt(token: str) -> Session:
    """
    Decode and verify a session JWT.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        payload = jwt.decode(token, config.settings.JWT_SECRET, algorithms=[config.settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired. Please sign in again.",
        ) from e
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token. Please sign in again.",
        ) from e

    try:
        return Session(
            user_id=UUID(payload["sub"]),
            issued_at=datetime.fromtimestamp(payload["iat"], UTC),
            expires_at=datetime.fromtimestamp(payload["exp"], UTC),
        )
    except (KeyError, ValueError) as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token. Please sign in again.",
        ) from e


def set_session_cookie(response: Response, user_id: UUID) -> None:
    """Attach a fresh HTTP-only session cookie."""
    response.set_cookie(
        key=SESSION_COOKIE,
        value=create_jwt(user_id),
        httponly=True,
        secure=True,  # HTTPS only
        samesite="lax",
        max_age=config.settings.JWT_EXPIRY_HOURS * 3600,
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value="",
        httponly=True,
        secure=True,
        samesite="lax",
        max_age=0,  # Expire immediately
        path="/",
    )


async def get_current_session(session: Annotated[str | None, Cookie()] = None) -> Session:
    """
    FastAPI dependency: the caller's session.

    Raises:
        HTTPException: If there is no valid session cookie
    """
    if not session:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated. Please sign in.",
        )
    return decode_jwt(session)


async def get_optional_session(session: Annotated[str | None, Cookie()] = None) -> Session | None:
    """
    FastAPI dependency for endpoints open to both signed-in and anonymous callers.

    A present but invalid cookie is still rejected.
    """
    if not session:
        return None
    return decode_jwt(session)


async def get_current_user(session: Annotated[str | None, Cookie()] = None) -> User:
    """
    FastAPI dependency to get the current authenticated user.

    Raises:
        HTTPException: If authentication fails or the user no longer exists
    """
    current = await get_current_session(session)
    async with system_conn() as conn:
        user = await user_repo.get(conn, current.user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found. Please sign in again.",
        )
    return user
