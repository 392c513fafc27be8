"""Plan routes: selection, seat availability, seat admission and release, limit changes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends

from cliqsafe.auth import get_current_session
from cliqsafe.errors import CliqsafeError, raise_http
from cliqsafe.models.auth import Session
from cliqsafe.models.plan import (
    Availability,
    ChangePlanLimitRequest,
    CreatePlanRequest,
    Plan,
    ReserveSeatRequest,
    SeatReservation,
    SelectPlanResponse,
)
from cliqsafe.services import approval_service, capacity_service

router = APIRouter(prefix="/api/plans", tags=["plans"])


@router.post("", status_code=201)
async def create_plan(
    req: CreatePlanRequest,
    session: Session = Depends(get_current_session),
) -> SelectPlanResponse:
    """Create the caller's plan and seat any approved children waiting on it."""
    try:
        plan, admitted = await approval_service.select_plan(
            session,
            req.plan_key,
            req.max_members,
            is_group_plan=req.is_group_plan,
            billing_cycle=req.billing_cycle,
            stripe_subscription_id=req.stripe_subscription_id,
        )
    except CliqsafeError as e:
        raise_http(e)
    return SelectPlanResponse(plan=plan, admitted_child_ids=admitted)


@router.get("/{plan_id}/availability", status_code=200)
async def availability(
    plan_id: UUID,
    session: Session = Depends(get_current_session),
) -> Availability:
    try:
        return await capacity_service.check_availability_now(plan_id, owner_id=session.user_id)
    except CliqsafeError as e:
        raise_http(e)


@router.post("/{plan_id}/seats", status_code=200)
async def reserve_seat(
    plan_id: UUID,
    req: ReserveSeatRequest,
    session: Session = Depends(get_current_session),
) -> SeatReservation:
    """Admit a member. A full plan answers 409 with its current numbers."""
    try:
        return await capacity_service.reserve_seat_now(plan_id, req.member_id, req.role, owner_id=session.user_id)
    except CliqsafeError as e:
        raise_http(e)


@router.delete("/{plan_id}/seats/{member_id}", status_code=200)
async def release_seat(
    plan_id: UUID,
    member_id: UUID,
    session: Session = Depends(get_current_session),
) -> Availability:
    try:
        return await capacity_service.release_seat_now(plan_id, member_id, owner_id=session.user_id)
    except CliqsafeError as e:
        raise_http(e)


@router.post("/{plan_id}/limit", status_code=200)
async def change_limit(
    plan_id: UUID,
    req: ChangePlanLimitRequest,
    session: Session = Depends(get_current_session),
) -> Plan:
    """Upgrade or downgrade. A ceiling below the active member count is refused."""
    try:
        return await capacity_service.change_plan_limit_now(
            plan_id, req.max_members, req.plan_key, owner_id=session.user_id
        )
    except CliqsafeError as e:
        raise_http(e)
