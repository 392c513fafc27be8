"""
Token store: issuance and single-use redemption of opaque secrets.

Three kinds share one table and one protocol:
- magic_link: live sign-in path, 15 minute TTL, subject is the user
- approval_link: parent approval, 7 day TTL, subject is the approval
- invite_code: invitation redemption, 7 day TTL, subject is the invite,
  context is the cliq it grants access to

Only the SHA-256 of a secret is stored. The raw secret leaves this module
exactly once, in the IssuedToken returned by issue().
"""

from __future__ import annotations

import logging
import secrets
from datetime import UTC, datetime, timedelta
from uuid import UUID

from asyncpg import Connection

from cliqsafe import config
from cliqsafe.db import system_conn
from cliqsafe.errors import TokenAlreadyUsed, TokenError, TokenExpired, TokenNotFound
from cliqsafe.models.token import ConsumedToken, IssuedToken, Token, TokenKind
from cliqsafe.repos import token_repo

logger = logging.getLogger(__name__)

SECRET_BYTES = 32  # 256 bits of entropy


def default_ttl(kind: TokenKind) -> timedelta:
    """TTL used when the caller does not pass one."""
    if kind == "magic_link":
        return timedelta(minutes=config.settings.MAGIC_LINK_EXPIRY_MINUTES)
    if kind == "approval_link":
        return timedelta(days=config.settings.APPROVAL_TOKEN_EXPIRY_DAYS)
    if kind == "invite_code":
        return timedelta(days=config.settings.INVITE_CODE_EXPIRY_DAYS)
    raise ValueError(f"unknown token kind: {kind}")


def generate_secret() -> str:
    """Generate a URL-safe random secret."""
    return secrets.token_urlsafe(SECRET_BYTES)


async def issue(
    conn: Connection,
    kind: TokenKind,
    subject_id: UUID,
    context_id: UUID | None = None,
    ttl: timedelta | None = None,
    now: datetime | None = None,
) -> IssuedToken:
    """
    Issue a new token inside the caller's transaction.

    Args:
        kind: Token kind
        subject_id: What the token is bound to (user, approval or invite)
        context_id: Optional second binding checked at redemption
        ttl: Lifetime, defaults per kind
        now: Issue time (defaults to current UTC time)

    Returns:
        IssuedToken carrying the raw secret. It cannot be recovered later.
    """
    now = now or datetime.now(UTC)
    ttl = ttl if ttl is not None else default_ttl(kind)
    if ttl <= timedelta(0):
        raise ValueError("token ttl must be positive")

    raw_secret = generate_secret()
    token = await token_repo.insert(
        conn,
        kind,
        token_repo.hash_secret(raw_secret),
        subject_id,
        context_id,
        now,
        now + ttl,
    )
    logger.info("Issued %s token %s for subject %s", kind, token.id, subject_id)
    return IssuedToken(
        id=token.id,
        kind=kind,
        raw_secret=raw_secret,
        subject_id=subject_id,
        context_id=context_id,
        expires_at=token.expires_at,
    )


def _classify_failure(
    token: Token | None,
    kind: TokenKind,
    expected_context: UUID | None,
    now: datetime,
) -> TokenError:
    """Work out why a conditional consume matched nothing. Expiry dominates use."""
    if token is None or token.kind != kind:
        return TokenNotFound()
    if expected_context is not None and token.context_id != expected_context:
        return TokenNotFound()
    if token.is_expired(now):
        return TokenExpired()
    if token.is_consumed():
        return TokenAlreadyUsed()
    # Lost a race between the update and the re-read; treat as used.
    return TokenAlreadyUsed()


async def consume(
    conn: Connection,
    kind: TokenKind,
    raw_secret: str,
    expected_context: UUID | None = None,
    now: datetime | None = None,
) -> ConsumedToken:
    """
    Redeem a token inside the caller's transaction.

    A single conditional UPDATE decides the outcome, so concurrent
    redemptions of one secret produce exactly one success.

    Raises:
        TokenNotFound: No token of this kind/context matches the secret
        TokenExpired: The token is past its expiry
        TokenAlreadyUsed: The token was redeemed before
    """
    now = now or datetime.now(UTC)
    secret_hash = token_repo.hash_secret(raw_secret)

    token = await token_repo.consume(conn, kind, secret_hash, now, expected_context)
    if token is not None:
        logger.info("Consumed %s token %s", kind, token.id)
        return ConsumedToken(
            token_id=token.id,
            kind=token.kind,
            subject_id=token.subject_id,
            context_id=token.context_id,
            consumed_at=now,
        )

    error = _classify_failure(await token_repo.get_by_hash(conn, secret_hash), kind, expected_context, now)
    logger.warning("Rejected %s token redemption: %s", kind, error.kind)
    raise error


async def consume_now(
    kind: TokenKind,
    raw_secret: str,
    expected_context: UUID | None = None,
    now: datetime | None = None,
) -> ConsumedToken:
    """
    Redeem a token in its own transaction.

    The consumption is committed before this returns, so it survives any
    failure in whatever business step the caller runs next.
    """
    async with system_conn() as conn:
        return await consume(conn, kind, raw_secret, expected_context, now)


async def peek(conn: Connection, kind: TokenKind, raw_secret: str) -> Token | None:
    """Look a token up by secret without consuming it."""
    token = await token_repo.get_by_hash(conn, token_repo.hash_secret(raw_secret))
    if token is None or token.kind != kind:
        return None
    return token


async def find_consumed(
    conn: Connection,
    kind: TokenKind,
    raw_secret: str,
    now: datetime | None = None,
) -> Token:
    """
    Return a token that was already redeemed and has not expired.

    Used to authorise a retry of work that followed a redemption.

    Raises:
        TokenNotFound: No such token, or it was never redeemed
        TokenExpired: The token is past its expiry
    """
    now = now or datetime.now(UTC)
    token = await peek(conn, kind, raw_secret)
    if token is None or not token.is_consumed():
        logger.warning("Rejected %s token retry: not_found", kind)
        raise TokenNotFound()
    if token.is_expired(now):
        logger.warning("Rejected %s token retry: expired", kind)
        raise TokenExpired()
    return token


async def sweep(now: datetime | None = None) -> int:
    """
    Delete tokens past their expiry. Storage reclamation only.

    Returns:
        Number of tokens deleted
    """
    now = now or datetime.now(UTC)
    async with system_conn() as conn:
        deleted = await token_repo.delete_expired(conn, now)
    if deleted:
        logger.info("Swept %d expired tokens", deleted)
    return deleted
