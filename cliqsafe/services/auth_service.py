"""Magic-link sign-in on top of the token store."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from cliqsafe.db import system_conn
from cliqsafe.errors import TokenNotFound
from cliqsafe.models.user import User
from cliqsafe.repos import user_repo
from cliqsafe.services import token_service
from cliqsafe.services.email import EmailSender, send_magic_link

logger = logging.getLogger(__name__)


async def request_magic_link(
    email: str,
    now: datetime | None = None,
    sender: EmailSender | None = None,
) -> bool:
    """
    Issue and email a sign-in link for an existing account.

    Unknown emails are a silent no-op so callers can answer identically.

    Returns:
        True if a link was issued
    """
    now = now or datetime.now(UTC)
    async with system_conn() as conn:
        user = await user_repo.get_by_email(conn, email)
        if user is None:
            logger.info("Magic link requested for unknown email")
            return False
        token = await token_service.issue(conn, "magic_link", user.id, now=now)

    result = await send_magic_link(str(user.email), token.raw_secret, sender=sender)
    if not result.success:
        logger.warning("Magic link email for user %s not delivered: %s", user.id, result.error)
    return True


async def verify_magic_link(raw_secret: str, now: datetime | None = None) -> User:
    """
    Redeem a sign-in link.

    Raises:
        TokenNotFound, TokenAlreadyUsed, TokenExpired: From the token store
    """
    consumed = await token_service.consume_now("magic_link", raw_secret, now=now)
    async with system_conn() as conn:
        user = await user_repo.get(conn, consumed.subject_id)
    if user is None:
        # Account deleted after the link was issued.
        logger.warning("Magic link %s bound to missing user %s", consumed.token_id, consumed.subject_id)
        raise TokenNotFound()
    logger.info("User %s signed in by magic link", user.id)
    return user
