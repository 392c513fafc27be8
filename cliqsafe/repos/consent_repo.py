"""Parent consent repository."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from asyncpg import Connection

from cliqsafe.models.consent import ParentConsent

_COLUMNS = """
    id, parent_id, child_id, red_alert_accepted, silent_monitoring_enabled,
    consent_timestamp, ip_address, user_agent
"""


async def upsert(
    conn: Connection,
    parent_id: UUID,
    child_id: UUID,
    red_alert_accepted: bool,
    silent_monitoring_enabled: bool,
    consent_timestamp: datetime,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> ParentConsent:
    """Create the consent for a parent/child pair, or refresh the existing one."""
    row = await conn.fetchrow(
        f"""
        INSERT INTO parent_consents (
            parent_id, child_id, red_alert_accepted, silent_monitoring_enabled,
            consent_timestamp, ip_address, user_agent
        )
        VALUES ($1, $2, $3, $4, $5, $6, $7)
        ON CONFLICT (parent_id, child_id) DO UPDATE
        SET red_alert_accepted = EXCLUDED.red_alert_accepted,
            silent_monitoring_enabled = EXCLUDED.silent_monitoring_enabled,
            consent_timestamp = EXCLUDED.consent_timestamp,
            ip_address = COALESCE(EXCLUDED.ip_address, parent_consents.ip_address),
            user_agent = COALESCE(EXCLUDED.user_agent, parent_consents.user_agent)
        RETURNING {_COLUMNS}
        """,
        parent_id,
        child_id,
        red_alert_accepted,
        silent_monitoring_enabled,
        consent_timestamp,
        ip_address,
        user_agent,
    )
    return ParentConsent(**dict(row))


async def get(conn: Connection, parent_id: UUID, child_id: UUID) -> ParentConsent | None:
    row = await conn.fetchrow(
        f"SELECT {_COLUMNS} FROM parent_consents WHERE parent_id = $1 AND child_id = $2",
        parent_id,
        child_id,
    )
    return ParentConsent(**dict(row)) if row else None


async def list_by_child(conn: Connection, child_id: UUID) -> list[ParentConsent]:
    rows = await conn.fetch(
        f"SELECT {_COLUMNS} FROM parent_consents WHERE child_id = $1 ORDER BY consent_timestamp",
        child_id,
    )
    return [ParentConsent(**dict(row)) for row in rows]


async def list_by_parent(conn: Connection, parent_id: UUID) -> list[ParentConsent]:
    rows = await conn.fetch(
        f"SELECT {_COLUMNS} FROM parent_consents WHERE parent_id = $1 ORDER BY consent_timestamp",
        parent_id,
    )
    return [ParentConsent(**dict(row)) for row in rows]


async def has_red_alert_consent(conn: Connection, child_id: UUID) -> bool:
    """True if a currently linked parent has accepted the Red Alert agreement for this child."""
    return await conn.fetchval(
        """
        SELECT EXISTS (
            SELECT 1
            FROM parent_consents c
            JOIN parent_links l ON l.parent_id = c.parent_id AND l.child_id = c.child_id
            WHERE c.child_id = $1 AND c.red_alert_accepted
        )
        """,
        child_id,
    )
