"""Plan and membership models for seat capacity."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

BillingCycle = Literal["monthly", "annual"]
MembershipRole = Literal["parent", "child", "member", "admin"]
MembershipStatus = Literal["active", "pending", "removed"]


class Plan(BaseModel):
    """Represents a row in the plans table. current_members is a cached aggregate."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: UUID
    plan_key: str
    max_members: int
    current_members: int
    is_group_plan: bool
    billing_cycle: BillingCycle
    stripe_subscription_id: str | None = None
    created_at: datetime
    updated_at: datetime


class Membership(BaseModel):
    """Represents a row in the memberships table."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    member_id: UUID
    plan_id: UUID
    role: MembershipRole
    status: MembershipStatus
    created_at: datetime
    updated_at: datetime


class SeatReservation(BaseModel):
    ok: bool = True
    plan_id: UUID
    member_id: UUID
    slots_remaining: int


class Availability(BaseModel):
    available: bool
    slots_remaining: int
    max_members: int
    current_members: int


class CreatePlanRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    plan_key: str = Field(..., min_length=1, max_length=50)
    max_members: int = Field(..., ge=1, le=100)
    is_group_plan: bool = False
    billing_cycle: BillingCycle = "monthly"
    stripe_subscription_id: str | None = None


class ReserveSeatRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    member_id: UUID
    role: MembershipRole = "member"


class ChangePlanLimitRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_members: int = Field(..., ge=1, le=100)
    plan_key: str | None = None


class SelectPlanResponse(BaseModel):
    """A new plan plus the children whose deferred seats it picked up."""

    plan: Plan
    admitted_child_ids: list[UUID]
