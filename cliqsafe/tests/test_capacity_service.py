"""Tests for plan capacity: hard seat limits under concurrency."""

from __future__ import annotations

import asyncio

import pytest

from cliqsafe.db import system_conn
from cliqsafe.errors import CapacityExceeded, NotAuthorized, PlanAlreadyExists
from cliqsafe.repos import plan_repo
from cliqsafe.services import capacity_service

pytestmark = pytest.mark.asyncio(loop_scope="session")


async def _plan(owner, max_members):
    async with system_conn() as conn:
        return await capacity_service.create_plan(conn, owner.id, "family-basic", max_members)


async def _active_count(plan_id):
    async with system_conn() as conn:
        plan = await plan_repo.get_plan(conn, plan_id)
        active = await plan_repo.count_active(conn, plan_id)
    return plan, active


class TestCreatePlan:
    async def test_owner_takes_first_seat(self, make_user):
        owner = await make_user("Parent")
        plan = await _plan(owner, 4)

        assert plan.current_members == 1
        async with system_conn() as conn:
            membership = await plan_repo.get_membership(conn, plan.id, owner.id)
        assert membership.role == "parent"
        assert membership.status == "active"

    async def test_one_plan_per_owner(self, make_user):
        owner = await make_user("Parent")
        await _plan(owner, 4)
        with pytest.raises(PlanAlreadyExists):
            await _plan(owner, 6)


class TestReserveSeat:
    async def test_full_plan_refuses(self, make_user):
        owner = await make_user("Parent")
        child = await make_user("Child")
        plan = await _plan(owner, 1)

        with pytest.raises(CapacityExceeded) as exc_info:
            await capacity_service.reserve_seat_now(plan.id, child.id, "child")

        assert exc_info.value.slots_remaining == 0
        assert exc_info.value.max_members == 1
        assert exc_info.value.current_members == 1
        _, active = await _active_count(plan.id)
        assert active == 1

    async def test_readmission_is_noop(self, make_user):
        owner = await make_user("Parent")
        child = await make_user("Child")
        plan = await _plan(owner, 3)

        first = await capacity_service.reserve_seat_now(plan.id, child.id, "child")
        again = await capacity_service.reserve_seat_now(plan.id, child.id, "child")

        assert first.slots_remaining == 1
        assert again.slots_remaining == 1
        stored, active = await _active_count(plan.id)
        assert active == stored.current_members == 2

    async def test_concurrent_reservations_never_exceed_ceiling(self, make_user):
        owner = await make_user("Parent")
        plan = await _plan(owner, 3)
        children = [await make_user("Child") for _ in range(6)]

        results = await asyncio.gather(
            *(capacity_service.reserve_seat_now(plan.id, c.id, "child") for c in children),
            return_exceptions=True,
        )

        admitted = [r for r in results if not isinstance(r, Exception)]
        refused = [r for r in results if isinstance(r, CapacityExceeded)]
        assert len(admitted) == 2
        assert len(refused) == 4
        stored, active = await _active_count(plan.id)
        assert active == stored.current_members == 3

    async def test_owner_check(self, make_user):
        owner = await make_user("Parent")
        stranger = await make_user("Parent")
        child = await make_user("Child")
        plan = await _plan(owner, 3)

        with pytest.raises(NotAuthorized):
            await capacity_service.reserve_seat_now(plan.id, child.id, "child", owner_id=stranger.id)


class TestReleaseAndLimits:
    async def test_release_frees_seat(self, make_user):
        owner = await make_user("Parent")
        child = await make_user("Child")
        other = await make_user("Child")
        plan = await _plan(owner, 2)
        await capacity_service.reserve_seat_now(plan.id, child.id, "child")

        availability = await capacity_service.release_seat_now(plan.id, child.id)
        assert availability.available is True
        assert availability.current_members == 1

        await capacity_service.reserve_seat_now(plan.id, other.id, "child")

    async def test_release_absent_member_is_noop(self, make_user):
        owner = await make_user("Parent")
        stranger = await make_user("Child")
        plan = await _plan(owner, 2)

        availability = await capacity_service.release_seat_now(plan.id, stranger.id)
        assert availability.current_members == 1

    async def test_upgrade_then_admit(self, make_user):
        owner = await make_user("Parent")
        child = await make_user("Child")
        plan = await _plan(owner, 1)

        with pytest.raises(CapacityExceeded):
            await capacity_service.reserve_seat_now(plan.id, child.id, "child")

        upgraded = await capacity_service.change_plan_limit_now(plan.id, 4, "family-plus")
        assert upgraded.max_members == 4
        assert upgraded.plan_key == "family-plus"

        reservation = await capacity_service.reserve_seat_now(plan.id, child.id, "child")
        assert reservation.slots_remaining == 2

    async def test_downgrade_below_active_refused(self, make_user):
        owner = await make_user("Parent")
        child = await make_user("Child")
        plan = await _plan(owner, 3)
        await capacity_service.reserve_seat_now(plan.id, child.id, "child")

        with pytest.raises(CapacityExceeded):
            await capacity_service.change_plan_limit_now(plan.id, 1)

        availability = await capacity_service.check_availability_now(plan.id)
        assert availability.max_members == 3
        assert availability.slots_remaining == 1
