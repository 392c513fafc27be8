"""Parent link repository."""

from __future__ import annotations

from uuid import UUID

import asyncpg
from asyncpg import Connection

from cliqsafe.db import affected_rows
from cliqsafe.models.parent_link import LinkRole, ParentLink, Permissions

_COLUMNS = """
    id, parent_id, child_id, role, can_manage_child, can_change_settings,
    can_view_activity, receives_notifications, created_at
"""


def _row_to_parent_link(row: asyncpg.Record) -> ParentLink:
    """Convert a database row to a ParentLink model."""
    return ParentLink(
        id=row["id"],
        parent_id=row["parent_id"],
        child_id=row["child_id"],
        role=row["role"],
        permissions=Permissions(
            can_manage_child=row["can_manage_child"],
            can_change_settings=row["can_change_settings"],
            can_view_activity=row["can_view_activity"],
            receives_notifications=row["receives_notifications"],
        ),
        created_at=row["created_at"],
    )


async def create(
    conn: Connection,
    parent_id: UUID,
    child_id: UUID,
    role: LinkRole,
    permissions: Permissions,
) -> ParentLink | None:
    """
    Insert a link.

    Returns:
        The new link, or None if the pair is already linked
    """
    row = await conn.fetchrow(
        f"""
        INSERT INTO parent_links (
            parent_id, child_id, role, can_manage_child, can_change_settings,
            can_view_activity, receives_notifications
        )
        VALUES ($1, $2, $3, $4, $5, $6, $7)
        ON CONFLICT (parent_id, child_id) DO NOTHING
        RETURNING {_COLUMNS}
        """,
        parent_id,
        child_id,
        role,
        permissions.can_manage_child,
        permissions.can_change_settings,
        permissions.can_view_activity,
        permissions.receives_notifications,
    )
    return _row_to_parent_link(row) if row else None


async def get_or_create(
    conn: Connection,
    parent_id: UUID,
    child_id: UUID,
    role: LinkRole,
    permissions: Permissions,
) -> ParentLink:
    """Idempotent link creation: an existing link is returned unchanged."""
    link = await create(conn, parent_id, child_id, role, permissions)
    if link is not None:
        return link
    return await get(conn, parent_id, child_id)


async def get(conn: Connection, parent_id: UUID, child_id: UUID) -> ParentLink | None:
    row = await conn.fetchrow(
        f"SELECT {_COLUMNS} FROM parent_links WHERE parent_id = $1 AND child_id = $2",
        parent_id,
        child_id,
    )
    return _row_to_parent_link(row) if row else None


async def list_by_child(conn: Connection, child_id: UUID) -> list[ParentLink]:
    rows = await conn.fetch(
        f"SELECT {_COLUMNS} FROM parent_links WHERE child_id = $1 ORDER BY created_at",
        child_id,
    )
    return [_row_to_parent_link(row) for row in rows]


async def list_by_parent(conn: Connection, parent_id: UUID) -> list[ParentLink]:
    rows = await conn.fetch(
        f"SELECT {_COLUMNS} FROM parent_links WHERE parent_id = $1 ORDER BY created_at",
        parent_id,
    )
    return [_row_to_parent_link(row) for row in rows]


async def count_by_child(conn: Connection, child_id: UUID) -> int:
    return await conn.fetchval("SELECT count(*) FROM parent_links WHERE child_id = $1", child_id)


async def update_permissions(
    conn: Connection, parent_id: UUID, child_id: UUID, permissions: Permissions
) -> ParentLink | None:
    row = await conn.fetchrow(
        f"""
        UPDATE parent_links
        SET can_manage_child = $3, can_change_settings = $4,
            can_view_activity = $5, receives_notifications = $6
        WHERE parent_id = $1 AND child_id = $2
        RETURNING {_COLUMNS}
        """,
        parent_id,
        child_id,
        permissions.can_manage_child,
        permissions.can_change_settings,
        permissions.can_view_activity,
        permissions.receives_notifications,
    )
    return _row_to_parent_link(row) if row else None


async def update_role(conn: Connection, parent_id: UUID, child_id: UUID, role: LinkRole) -> ParentLink | None:
    row = await conn.fetchrow(
        f"""
        UPDATE parent_links SET role = $3
        WHERE parent_id = $1 AND child_id = $2
        RETURNING {_COLUMNS}
        """,
        parent_id,
        child_id,
        role,
    )
    return _row_to_parent_link(row) if row else None


async def delete(conn: Connection, parent_id: UUID, child_id: UUID) -> bool:
    result = await conn.execute(
        "DELETE FROM parent_links WHERE parent_id = $1 AND child_id = $2",
        parent_id,
        child_id,
    )
    return affected_rows(result) == 1
