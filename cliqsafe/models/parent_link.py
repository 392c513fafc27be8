"""Parent-child link models."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr

LinkRole = Literal["primary", "secondary", "guardian"]


class Permissions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    can_manage_child: bool = False
    can_change_settings: bool = False
    can_view_activity: bool = True
    receives_notifications: bool = True


PRIMARY_PERMISSIONS = Permissions(
    can_manage_child=True,
    can_change_settings=True,
    can_view_activity=True,
    receives_notifications=True,
)


class ParentLink(BaseModel):
    """Represents a row in the parent_links table."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    parent_id: UUID
    child_id: UUID
    role: LinkRole
    permissions: Permissions
    created_at: datetime


class AddParentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    parent_email: EmailStr
    role: Literal["secondary", "guardian"] = "secondary"
    permissions: Permissions = Permissions()


class UpdateParentLinkRequest(BaseModel):
    """Explicit optional fields; at least one must be given."""

    model_config = ConfigDict(extra="forbid")

    role: LinkRole | None = None
    permissions: Permissions | None = None
