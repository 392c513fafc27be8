"""Repository for user (account) operations."""

from __future__ import annotations

from datetime import date
from uuid import UUID

from asyncpg import Connection

from cliqsafe.models.user import Role, SetupStage, User

_COLUMNS = "id, email, first_name, last_name, birthdate, role, is_approved, setup_stage, created_at"


async def get(conn: Connection, user_id: UUID) -> User | None:
    row = await conn.fetchrow(f"SELECT {_COLUMNS} FROM users WHERE id = $1", user_id)
    return User(**dict(row)) if row else None


async def get_by_email(conn: Connection, email: str, for_update: bool = False) -> User | None:
    """
    Get a user by (normalised) email address.

    Args:
        email: Email address to look up
        for_update: Lock the row for the rest of the transaction
    """
    lock = " FOR UPDATE" if for_update else ""
    row = await conn.fetchrow(
        f"SELECT {_COLUMNS} FROM users WHERE email = $1{lock}",
        email.strip().lower(),
    )
    return User(**dict(row)) if row else None


async def create(
    conn: Connection,
    email: str | None,
    role: Role,
    first_name: str | None = None,
    last_name: str | None = None,
    birthdate: date | None = None,
    is_approved: bool = False,
) -> User:
    """Create a new account. The email, when given, is normalised to lower case."""
    row = await conn.fetchrow(
        f"""
        INSERT INTO users (email, role, first_name, last_name, birthdate, is_approved)
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING {_COLUMNS}
        """,
        email.strip().lower() if email else None,
        role,
        first_name,
        last_name,
        birthdate,
        is_approved,
    )
    return User(**dict(row))


async def set_role(conn: Connection, user_id: UUID, role: Role) -> User:
    row = await conn.fetchrow(
        f"UPDATE users SET role = $2 WHERE id = $1 RETURNING {_COLUMNS}",
        user_id,
        role,
    )
    return User(**dict(row))


async def set_approved(conn: Connection, user_id: UUID) -> User:
    row = await conn.fetchrow(
        f"UPDATE users SET is_approved = true WHERE id = $1 RETURNING {_COLUMNS}",
        user_id,
    )
    return User(**dict(row))


async def set_setup_stage(conn: Connection, user_id: UUID, stage: SetupStage) -> None:
    await conn.execute(
        "UPDATE users SET setup_stage = $2 WHERE id = $1",
        user_id,
        stage,
    )
