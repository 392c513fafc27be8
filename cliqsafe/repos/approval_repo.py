"""Parent approval repository."""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from asyncpg import Connection

from cliqsafe.db import affected_rows
from cliqsafe.models.approval import (
    ApprovalContext,
    ParentApproval,
    ParentState,
    ParentStateHint,
)

_COLUMNS = """
    id, child_first_name, child_last_name, child_birthdate, child_email, parent_email, context,
    invite_id, cliq_id, inviter_id, existing_parent_id, parent_state_hint, child_id,
    parent_id, token_id, status, parent_state, created_at, expires_at, approved_at,
    declined_at
"""


async def create(
    conn: Connection,
    child_first_name: str,
    child_last_name: str,
    child_birthdate: date,
    parent_email: str,
    context: ApprovalContext,
    expires_at: datetime,
    parent_state_hint: ParentStateHint = "new",
    existing_parent_id: UUID | None = None,
    invite_id: UUID | None = None,
    cliq_id: UUID | None = None,
    inviter_id: UUID | None = None,
    child_id: UUID | None = None,
    child_email: str | None = None,
) -> ParentApproval:
    """Insert a pending approval."""
    row = await conn.fetchrow(
        f"""
        INSERT INTO parent_approvals (
            child_first_name, child_last_name, child_birthdate, parent_email, context,
            expires_at, parent_state_hint, existing_parent_id, invite_id, cliq_id,
            inviter_id, child_id, child_email
        )
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
        RETURNING {_COLUMNS}
        """,
        child_first_name,
        child_last_name,
        child_birthdate,
        parent_email.strip().lower(),
        context,
        expires_at,
        parent_state_hint,
        existing_parent_id,
        invite_id,
        cliq_id,
        inviter_id,
        child_id,
        child_email.strip().lower() if child_email else None,
    )
    return ParentApproval(**dict(row))


async def get(conn: Connection, approval_id: UUID, for_update: bool = False) -> ParentApproval | None:
    """
    Get an approval by id.

    Args:
        for_update: Lock the row until the transaction ends, serialising
            concurrent transitions of the same approval
    """
    lock = " FOR UPDATE" if for_update else ""
    row = await conn.fetchrow(
        f"SELECT {_COLUMNS} FROM parent_approvals WHERE id = $1{lock}",
        approval_id,
    )
    return ParentApproval(**dict(row)) if row else None


async def get_by_token_id(conn: Connection, token_id: UUID) -> ParentApproval | None:
    row = await conn.fetchrow(
        f"SELECT {_COLUMNS} FROM parent_approvals WHERE token_id = $1",
        token_id,
    )
    return ParentApproval(**dict(row)) if row else None


async def list_by_parent_email(conn: Connection, parent_email: str) -> list[ParentApproval]:
    """All approvals addressed to an email, newest first."""
    rows = await conn.fetch(
        f"""
        SELECT {_COLUMNS} FROM parent_approvals
        WHERE parent_email = $1
        ORDER BY created_at DESC
        """,
        parent_email.strip().lower(),
    )
    return [ParentApproval(**dict(row)) for row in rows]


async def find_active_for_child(
    conn: Connection,
    parent_email: str,
    child_first_name: str,
    child_last_name: str,
    now: datetime,
) -> ParentApproval | None:
    """Find a pending, unexpired approval for the same parent and child name."""
    row = await conn.fetchrow(
        f"""
        SELECT {_COLUMNS} FROM parent_approvals
        WHERE parent_email = $1
          AND lower(child_first_name) = lower($2)
          AND lower(child_last_name) = lower($3)
          AND status = 'pending'
          AND expires_at > $4
        ORDER BY created_at DESC
        LIMIT 1
        """,
        parent_email.strip().lower(),
        child_first_name,
        child_last_name,
        now,
    )
    return ParentApproval(**dict(row)) if row else None


async def list_deferred_for_parent(conn: Connection, parent_id: UUID) -> list[ParentApproval]:
    """Approved approvals whose child still waits for a seat on the parent's plan."""
    rows = await conn.fetch(
        f"""
        SELECT {_COLUMNS} FROM parent_approvals
        WHERE parent_id = $1
          AND status = 'approved'
          AND parent_state = 'started'
        ORDER BY approved_at
        FOR UPDATE
        """,
        parent_id,
    )
    return [ParentApproval(**dict(row)) for row in rows]


async def set_token(conn: Connection, approval_id: UUID, token_id: UUID) -> None:
    """Record the most recently issued approval-link token."""
    await conn.execute(
        "UPDATE parent_approvals SET token_id = $2 WHERE id = $1",
        approval_id,
        token_id,
    )


async def mark_approved(
    conn: Connection,
    approval_id: UUID,
    parent_id: UUID,
    child_id: UUID,
    parent_state: ParentState,
    approved_at: datetime,
) -> ParentApproval | None:
    """
    Transition pending -> approved.

    Returns:
        Updated approval, or None if it was no longer pending
    """
    row = await conn.fetchrow(
        f"""
        UPDATE parent_approvals
        SET status = 'approved', parent_id = $2, child_id = $3,
            parent_state = $4, approved_at = $5
        WHERE id = $1 AND status = 'pending'
        RETURNING {_COLUMNS}
        """,
        approval_id,
        parent_id,
        child_id,
        parent_state,
        approved_at,
    )
    return ParentApproval(**dict(row)) if row else None


async def mark_declined(conn: Connection, approval_id: UUID, declined_at: datetime) -> ParentApproval | None:
    """
    Transition pending -> declined. Expired approvals are left alone.

    Returns:
        Updated approval, or None if it was not pending and unexpired
    """
    row = await conn.fetchrow(
        f"""
        UPDATE parent_approvals
        SET status = 'declined', declined_at = $2
        WHERE id = $1 AND status = 'pending' AND expires_at > $2
        RETURNING {_COLUMNS}
        """,
        approval_id,
        declined_at,
    )
    return ParentApproval(**dict(row)) if row else None


async def set_parent_state(conn: Connection, approval_id: UUID, parent_state: ParentState) -> bool:
    """Update the seat bookkeeping of an approved approval."""
    result = await conn.execute(
        "UPDATE parent_approvals SET parent_state = $2 WHERE id = $1 AND status = 'approved'",
        approval_id,
        parent_state,
    )
    return affected_rows(result) == 1
