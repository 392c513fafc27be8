"""Plan and membership repository."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from asyncpg import Connection

from cliqsafe.models.plan import BillingCycle, Membership, MembershipRole, Plan

_PLAN_COLUMNS = """
    id, owner_id, plan_key, max_members, current_members, is_group_plan,
    billing_cycle, stripe_subscription_id, created_at, updated_at
"""
_MEMBERSHIP_COLUMNS = "id, member_id, plan_id, role, status, created_at, updated_at"


# ── plans ───────────────────────────────────────────────────────────────────


async def create_plan(
    conn: Connection,
    owner_id: UUID,
    plan_key: str,
    max_members: int,
    is_group_plan: bool,
    billing_cycle: BillingCycle,
    stripe_subscription_id: str | None = None,
) -> Plan | None:
    """
    Insert a plan with zero members.

    Returns:
        The plan, or None if the owner already has one
    """
    row = await conn.fetchrow(
        f"""
        INSERT INTO plans (
            owner_id, plan_key, max_members, current_members, is_group_plan,
            billing_cycle, stripe_subscription_id
        )
        VALUES ($1, $2, $3, 0, $4, $5, $6)
        ON CONFLICT (owner_id) DO NOTHING
        RETURNING {_PLAN_COLUMNS}
        """,
        owner_id,
        plan_key,
        max_members,
        is_group_plan,
        billing_cycle,
        stripe_subscription_id,
    )
    return Plan(**dict(row)) if row else None


async def get_plan(conn: Connection, plan_id: UUID, for_update: bool = False) -> Plan | None:
    """
    Get a plan by id.

    Args:
        for_update: Lock the plan row until the transaction ends. Every
            membership mutation takes this lock first, which serialises
            seat decisions per plan.
    """
    lock = " FOR UPDATE" if for_update else ""
    row = await conn.fetchrow(f"SELECT {_PLAN_COLUMNS} FROM plans WHERE id = $1{lock}", plan_id)
    return Plan(**dict(row)) if row else None


async def get_plan_by_owner(conn: Connection, owner_id: UUID) -> Plan | None:
    row = await conn.fetchrow(f"SELECT {_PLAN_COLUMNS} FROM plans WHERE owner_id = $1", owner_id)
    return Plan(**dict(row)) if row else None


async def set_max_members(
    conn: Connection, plan_id: UUID, max_members: int, plan_key: str | None, now: datetime
) -> Plan:
    row = await conn.fetchrow(
        f"""
        UPDATE plans
        SET max_members = $2, plan_key = COALESCE($3, plan_key), updated_at = $4
        WHERE id = $1
        RETURNING {_PLAN_COLUMNS}
        """,
        plan_id,
        max_members,
        plan_key,
        now,
    )
    return Plan(**dict(row))


async def sync_member_count(conn: Connection, plan_id: UUID, now: datetime) -> Plan:
    """
    Recompute current_members from the active memberships and store it.

    The cached count is always derived, never incremented.
    """
    row = await conn.fetchrow(
        f"""
        UPDATE plans
        SET current_members = (
                SELECT count(*) FROM memberships
                WHERE plan_id = $1 AND status = 'active'
            ),
            updated_at = $2
        WHERE id = $1
        RETURNING {_PLAN_COLUMNS}
        """,
        plan_id,
        now,
    )
    return Plan(**dict(row))


# ── memberships ─────────────────────────────────────────────────────────────


async def count_active(conn: Connection, plan_id: UUID) -> int:
    """Authoritative active-member count for a plan."""
    return await conn.fetchval(
        "SELECT count(*) FROM memberships WHERE plan_id = $1 AND status = 'active'",
        plan_id,
    )


async def get_membership(conn: Connection, plan_id: UUID, member_id: UUID) -> Membership | None:
    row = await conn.fetchrow(
        f"SELECT {_MEMBERSHIP_COLUMNS} FROM memberships WHERE plan_id = $1 AND member_id = $2",
        plan_id,
        member_id,
    )
    return Membership(**dict(row)) if row else None


async def list_memberships(conn: Connection, plan_id: UUID) -> list[Membership]:
    rows = await conn.fetch(
        f"SELECT {_MEMBERSHIP_COLUMNS} FROM memberships WHERE plan_id = $1 ORDER BY created_at",
        plan_id,
    )
    return [Membership(**dict(row)) for row in rows]


async def activate_membership(
    conn: Connection, plan_id: UUID, member_id: UUID, role: MembershipRole, now: datetime
) -> Membership:
    """Create the membership as active, or reactivate an existing row."""
    row = await conn.fetchrow(
        f"""
        INSERT INTO memberships (member_id, plan_id, role, status, created_at, updated_at)
        VALUES ($1, $2, $3, 'active', $4, $4)
        ON CONFLICT (member_id, plan_id) DO UPDATE
        SET status = 'active', role = EXCLUDED.role, updated_at = EXCLUDED.updated_at
        RETURNING {_MEMBERSHIP_COLUMNS}
        """,
        member_id,
        plan_id,
        role,
        now,
    )
    return Membership(**dict(row))


async def remove_membership(conn: Connection, plan_id: UUID, member_id: UUID, now: datetime) -> Membership | None:
    row = await conn.fetchrow(
        f"""
        UPDATE memberships
        SET status = 'removed', updated_at = $3
        WHERE plan_id = $1 AND member_id = $2
        RETURNING {_MEMBERSHIP_COLUMNS}
        """,
        plan_id,
        member_id,
        now,
    )
    return Membership(**dict(row)) if row else None
