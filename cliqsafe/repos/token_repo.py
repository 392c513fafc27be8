"""Token repository. Stores secret hashes only, never raw secrets."""

from __future__ import annotations

import hashlib
from datetime import datetime
from uuid import UUID

from asyncpg import Connection

from cliqsafe.db import affected_rows
from cliqsafe.models.token import Token, TokenKind

_COLUMNS = "id, kind, secret_hash, subject_id, context_id, issued_at, expires_at, consumed_at"


def hash_secret(raw_secret: str) -> str:
    """Hash a raw secret using SHA-256."""
    return hashlib.sha256(raw_secret.encode()).hexdigest()


async def insert(
    conn: Connection,
    kind: TokenKind,
    secret_hash: str,
    subject_id: UUID,
    context_id: UUID | None,
    issued_at: datetime,
    expires_at: datetime,
) -> Token:
    """Insert a new unconsumed token."""
    row = await conn.fetchrow(
        f"""
        INSERT INTO tokens (kind, secret_hash, subject_id, context_id, issued_at, expires_at)
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING {_COLUMNS}
        """,
        kind,
        secret_hash,
        subject_id,
        context_id,
        issued_at,
        expires_at,
    )
    return Token(**dict(row))


async def get_by_hash(conn: Connection, secret_hash: str) -> Token | None:
    """Get token by secret hash, whatever its state."""
    row = await conn.fetchrow(
        f"SELECT {_COLUMNS} FROM tokens WHERE secret_hash = $1",
        secret_hash,
    )
    return Token(**dict(row)) if row else None


async def get(conn: Connection, token_id: UUID) -> Token | None:
    row = await conn.fetchrow(f"SELECT {_COLUMNS} FROM tokens WHERE id = $1", token_id)
    return Token(**dict(row)) if row else None


async def consume(
    conn: Connection,
    kind: TokenKind,
    secret_hash: str,
    now: datetime,
    expected_context: UUID | None = None,
) -> Token | None:
    """
    Conditionally mark a token consumed.

    The WHERE clause is the whole check: only an unconsumed, unexpired token
    of the right kind (and context, when given) matches. Postgres row locking
    makes concurrent calls race to a single winner; losers re-evaluate the
    predicate after the winner commits and match nothing.

    Returns:
        The consumed token, or None when nothing matched
    """
    row = await conn.fetchrow(
        f"""
        UPDATE tokens
        SET consumed_at = $3
        WHERE secret_hash = $1
          AND kind = $2
          AND consumed_at IS NULL
          AND expires_at > $3
          AND ($4::uuid IS NULL OR context_id = $4::uuid)
        RETURNING {_COLUMNS}
        """,
        secret_hash,
        kind,
        now,
        expected_context,
    )
    return Token(**dict(row)) if row else None


async def list_by_subject(conn: Connection, subject_id: UUID) -> list[Token]:
    rows = await conn.fetch(
        f"SELECT {_COLUMNS} FROM tokens WHERE subject_id = $1 ORDER BY issued_at DESC",
        subject_id,
    )
    return [Token(**dict(row)) for row in rows]


async def delete_expired(conn: Connection, now: datetime) -> int:
    """Delete tokens past expiry. Returns count deleted."""
    result = await conn.execute("DELETE FROM tokens WHERE expires_at < $1", now)
    # result is a string like "DELETE 5"
    return affected_rows(result)
