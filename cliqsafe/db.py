"""
Database connection pool and transaction-scoped connection managers.

All database access goes through system_conn().
Never use pool.acquire() directly outside this module.
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from uuid import UUID

import asyncpg

from cliqsafe import config

pool: asyncpg.Pool | None = None


async def init_pool() -> None:
    """
    Initialize the connection pool.
    Called once at application startup.
    """
    global pool
    pool = await asyncpg.create_pool(
        dsn=config.settings.DATABASE_URL,
        min_size=2,
        max_size=20,
        command_timeout=60,
        init=_init_connection,
    )


async def close_pool() -> None:
    """
    Close the connection pool.
    Called at application shutdown.
    """
    global pool
    if pool is not None:
        await pool.close()
        pool = None


async def _init_connection(conn: asyncpg.Connection) -> None:
    """
    Initialize each new connection.
    Sets up type codecs for UUID and JSON handling.
    """
    await conn.set_type_codec(
        "uuid",
        encoder=str,
        decoder=lambda x: UUID(x),
        schema="pg_catalog",
    )
    # JSONB codec - decode to Python dict/list
    await conn.set_type_codec(
        "jsonb",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )


@asynccontextmanager
async def system_conn():
    """
    Acquire a database connection wrapped in a transaction.

    Everything executed inside one `async with` block commits or rolls back
    together. Services open one block per atomic step of a workflow.

    Usage:
        async with system_conn() as conn:
            row = await conn.fetchrow("SELECT * FROM users WHERE email = $1", email)

    Yields:
        asyncpg.Connection inside an open transaction
    """
    if pool is None:
        raise RuntimeError("Database pool not initialized. Call init_pool() first.")

    async with pool.acquire() as conn:
        async with conn.transaction():
            yield conn


async def advisory_xact_lock(conn: asyncpg.Connection, key: str) -> None:
    """
    Take a transaction-scoped advisory lock on an arbitrary string key.

    Released automatically at commit or rollback.
    """
    await conn.execute("SELECT pg_advisory_xact_lock(hashtextextended($1, 0))", key)


def affected_rows(status: str) -> int:
    """Parse the row count out of an asyncpg command status ("UPDATE 3")."""
    parts = status.split() if status else []
    return int(parts[-1]) if parts and parts[-1].isdigit() else 0
