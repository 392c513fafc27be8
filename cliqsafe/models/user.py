"""User (account) models and the role upgrade table."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal, get_args
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr

Role = Literal["Adult", "Parent", "Child", "Admin"]
SetupStage = Literal["started", "plan_selected", "child_pending", "completed"]

ROLES: tuple[Role, ...] = get_args(Role)

# Result of asking an account with a given role to act as a child's parent.
# None means the account can never become a Parent.
_PARENT_UPGRADE: dict[Role, Role | None] = {
    "Adult": "Parent",
    "Parent": "Parent",
    "Child": None,
    "Admin": None,
}

assert set(_PARENT_UPGRADE) == set(ROLES), "every role needs a parent-upgrade entry"


def parent_upgrade(role: Role) -> Role | None:
    """
    Return the role an account ends up with when it becomes a child's parent.

    Adult -> Parent, Parent stays Parent, Child and Admin are refused (None).
    """
    return _PARENT_UPGRADE[role]


class User(BaseModel):
    """Core user model. Represents a row in the users table."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: EmailStr | None = None  # children may have no email of their own
    first_name: str | None = None
    last_name: str | None = None
    birthdate: date | None = None
    role: Role
    is_approved: bool = False
    setup_stage: SetupStage | None = None
    created_at: datetime


class UserPublic(BaseModel):
    """What the API returns."""

    id: UUID
    email: EmailStr | None
    first_name: str | None
    last_name: str | None
    role: Role
    is_approved: bool
    setup_stage: SetupStage | None

    @classmethod
    def from_user(cls, user: User) -> UserPublic:
        """Convert internal User model to public API response."""
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
            is_approved=user.is_approved,
            setup_stage=user.setup_stage,
        )
