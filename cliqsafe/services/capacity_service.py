"""
Plan capacity controller.

Every membership mutation runs under the plan's row lock
(SELECT ... FOR UPDATE), reads the authoritative active count, decides,
writes, and re-derives plans.current_members from the memberships table
before the lock is released. Two reservations on the same plan therefore
never both see the last free seat.

Functions taking `conn` join the caller's transaction (used by the approval
workflow); the `*_now` variants own their transaction (used by routes).
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from uuid import UUID

from asyncpg import Connection

from cliqsafe.db import system_conn
from cliqsafe.errors import CapacityExceeded, NotAuthorized, PlanAlreadyExists, PlanNotFound
from cliqsafe.models.plan import (
    Availability,
    BillingCycle,
    MembershipRole,
    Plan,
    SeatReservation,
)
from cliqsafe.repos import plan_repo

logger = logging.getLogger(__name__)


async def _lock_plan(conn: Connection, plan_id: UUID) -> Plan:
    plan = await plan_repo.get_plan(conn, plan_id, for_update=True)
    if plan is None:
        raise PlanNotFound(f"plan {plan_id} not found")
    return plan


async def reserve_seat(
    conn: Connection,
    plan_id: UUID,
    member_id: UUID,
    role: MembershipRole,
    now: datetime | None = None,
) -> SeatReservation:
    """
    Admit a member to a plan if a seat is free.

    Re-admitting a member who is already active is a successful no-op, so
    retried admissions never take a second seat.

    Raises:
        PlanNotFound: No such plan
        CapacityExceeded: The plan is full; nothing was written
    """
    now = now or datetime.now(UTC)
    plan = await _lock_plan(conn, plan_id)
    active = await plan_repo.count_active(conn, plan_id)

    existing = await plan_repo.get_membership(conn, plan_id, member_id)
    if existing is not None and existing.status == "active":
        plan = await plan_repo.sync_member_count(conn, plan_id, now)
        return SeatReservation(
            plan_id=plan_id,
            member_id=member_id,
            slots_remaining=max(plan.max_members - plan.current_members, 0),
        )

    if active >= plan.max_members:
        logger.info("Plan %s full (%d/%d), refused member %s", plan_id, active, plan.max_members, member_id)
        raise CapacityExceeded(
            plan_id,
            slots_remaining=max(plan.max_members - active, 0),
            max_members=plan.max_members,
            current_members=active,
        )

    await plan_repo.activate_membership(conn, plan_id, member_id, role, now)
    plan = await plan_repo.sync_member_count(conn, plan_id, now)
    logger.info(
        "Reserved seat on plan %s for %s as %s (%d/%d)",
        plan_id,
        member_id,
        role,
        plan.current_members,
        plan.max_members,
    )
    return SeatReservation(
        plan_id=plan_id,
        member_id=member_id,
        slots_remaining=plan.max_members - plan.current_members,
    )


async def release_seat(
    conn: Connection,
    plan_id: UUID,
    member_id: UUID,
    now: datetime | None = None,
) -> Availability:
    """
    Mark a membership removed and recompute the plan's count.

    Raises:
        PlanNotFound: No such plan
    """
    now = now or datetime.now(UTC)
    await _lock_plan(conn, plan_id)
    removed = await plan_repo.remove_membership(conn, plan_id, member_id, now)
    plan = await plan_repo.sync_member_count(conn, plan_id, now)
    if removed is not None:
        logger.info("Released seat on plan %s for %s", plan_id, member_id)
    return _availability(plan)


async def check_availability(conn: Connection, plan_id: UUID) -> Availability:
    """
    Advisory view of a plan's free seats. reserve_seat() makes the real decision.

    Raises:
        PlanNotFound: No such plan
    """
    plan = await plan_repo.get_plan(conn, plan_id)
    if plan is None:
        raise PlanNotFound(f"plan {plan_id} not found")
    active = await plan_repo.count_active(conn, plan_id)
    return Availability(
        available=active < plan.max_members,
        slots_remaining=max(plan.max_members - active, 0),
        max_members=plan.max_members,
        current_members=active,
    )


def _availability(plan: Plan) -> Availability:
    return Availability(
        available=plan.current_members < plan.max_members,
        slots_remaining=max(plan.max_members - plan.current_members, 0),
        max_members=plan.max_members,
        current_members=plan.current_members,
    )


async def create_plan(
    conn: Connection,
    owner_id: UUID,
    plan_key: str,
    max_members: int,
    is_group_plan: bool = False,
    billing_cycle: BillingCycle = "monthly",
    stripe_subscription_id: str | None = None,
    now: datetime | None = None,
) -> Plan:
    """
    Create an owner's plan. The owner takes the first seat as a parent member.

    Raises:
        PlanAlreadyExists: The owner already has a plan
    """
    plan = await plan_repo.create_plan(
        conn,
        owner_id,
        plan_key,
        max_members,
        is_group_plan,
        billing_cycle,
        stripe_subscription_id,
    )
    if plan is None:
        raise PlanAlreadyExists(f"owner {owner_id} already has a plan")

    await reserve_seat(conn, plan.id, owner_id, "parent", now)
    logger.info("Created plan %s (%s) for owner %s with max %d members", plan.id, plan_key, owner_id, max_members)
    return await plan_repo.get_plan(conn, plan.id)


async def change_plan_limit(
    conn: Connection,
    plan_id: UUID,
    max_members: int,
    plan_key: str | None = None,
    now: datetime | None = None,
) -> Plan:
    """
    Raise or lower a plan's ceiling.

    Raises:
        PlanNotFound: No such plan
        CapacityExceeded: The new ceiling is below the active member count
    """
    now = now or datetime.now(UTC)
    await _lock_plan(conn, plan_id)
    active = await plan_repo.count_active(conn, plan_id)
    if max_members < active:
        raise CapacityExceeded(plan_id, slots_remaining=0, max_members=max_members, current_members=active)

    await plan_repo.set_max_members(conn, plan_id, max_members, plan_key, now)
    plan = await plan_repo.sync_member_count(conn, plan_id, now)
    logger.info("Changed plan %s limit to %d members", plan_id, max_members)
    return plan


# ── transaction-owning wrappers ─────────────────────────────────────────────
# Routes pass the session user as owner_id; only a plan's owner may change it.


async def _check_owner(conn: Connection, plan_id: UUID, owner_id: UUID | None) -> None:
    if owner_id is None:
        return
    plan = await plan_repo.get_plan(conn, plan_id)
    if plan is None:
        raise PlanNotFound(f"plan {plan_id} not found")
    if plan.owner_id != owner_id:
        raise NotAuthorized(f"user {owner_id} does not own plan {plan_id}")


async def reserve_seat_now(
    plan_id: UUID, member_id: UUID, role: MembershipRole, owner_id: UUID | None = None
) -> SeatReservation:
    async with system_conn() as conn:
        await _check_owner(conn, plan_id, owner_id)
        return await reserve_seat(conn, plan_id, member_id, role)


async def release_seat_now(plan_id: UUID, member_id: UUID, owner_id: UUID | None = None) -> Availability:
    async with system_conn() as conn:
        await _check_owner(conn, plan_id, owner_id)
        return await release_seat(conn, plan_id, member_id)


async def check_availability_now(plan_id: UUID, owner_id: UUID | None = None) -> Availability:
    async with system_conn() as conn:
        await _check_owner(conn, plan_id, owner_id)
        return await check_availability(conn, plan_id)


async def change_plan_limit_now(
    plan_id: UUID, max_members: int, plan_key: str | None = None, owner_id: UUID | None = None
) -> Plan:
    async with system_conn() as conn:
        await _check_owner(conn, plan_id, owner_id)
        return await change_plan_limit(conn, plan_id, max_members, plan_key)
