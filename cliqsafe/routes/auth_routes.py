"""Authentication routes for magic link auth."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from cliqsafe import config
from cliqsafe.auth import clear_session_cookie, get_current_user, set_session_cookie
from cliqsafe.errors import CliqsafeError, raise_http
from cliqsafe.middleware.rate_limit import client_ip, rate_limiter
from cliqsafe.models.auth import (
    LogoutResponse,
    SendMagicLinkRequest,
    SendMagicLinkResponse,
)
from cliqsafe.models.user import User, UserPublic
from cliqsafe.services import auth_service

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/magic/request", status_code=200)
async def request_magic_link_endpoint(
    req: SendMagicLinkRequest,
    request: Request,
) -> SendMagicLinkResponse:
    """
    Send a sign-in link to an existing account.

    Rate limits:
    - 5 per email per hour
    - 20 per IP per hour
    """
    email = req.email.lower()
    rate_limiter.enforce(
        f"magic:email:{email}",
        config.settings.MAGIC_LINK_RATE_LIMIT_PER_EMAIL,
        60,
        f"Too many requests. Maximum {config.settings.MAGIC_LINK_RATE_LIMIT_PER_EMAIL} magic links per hour.",
    )
    rate_limiter.enforce(
        f"magic:ip:{client_ip(request)}",
        config.settings.MAGIC_LINK_RATE_LIMIT_PER_IP,
        60,
        f"Too many requests from this IP. Maximum {config.settings.MAGIC_LINK_RATE_LIMIT_PER_IP} per hour.",
    )

    await auth_service.request_magic_link(email)
    return SendMagicLinkResponse()


@router.get("/magic/verify", status_code=200)
async def verify_magic_link_endpoint(
    token: str,
    request: Request,
    response: Response,
) -> UserPublic:
    """
    Verify a magic link token and create a session.

    Rate limit: 10 attempts per IP per minute (prevents token brute force).
    """
    rate_limiter.enforce(
        f"verify:ip:{client_ip(request)}",
        config.settings.TOKEN_VERIFY_RATE_LIMIT_PER_IP,
        1,
        "Too many verification attempts. Please wait a moment.",
    )

    try:
        user = await auth_service.verify_magic_link(token)
    except CliqsafeError as e:
        raise_http(e)

    set_session_cookie(response, user.id)
    return UserPublic.from_user(user)


@router.get("/me", status_code=200)
async def get_current_user_endpoint(
    user: User = Depends(get_current_user),
) -> UserPublic:
    """
    Get the current authenticated user.

    Requires valid session cookie.
    """
    return UserPublic.from_user(user)


@router.post("/logout", status_code=200)
async def logout_endpoint(response: Response) -> LogoutResponse:
    """Clear the session cookie."""
    clear_session_cookie(response)
    return LogoutResponse()
