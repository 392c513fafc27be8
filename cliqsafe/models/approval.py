"""Parent approval models: the pending sign-off for a child account."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

ApprovalStatus = Literal["pending", "approved", "declined", "expired"]
ApprovalContext = Literal["invite_flow", "direct_signup"]
ParentStateHint = Literal["new", "existing_parent", "existing_adult"]
# "started": parent approved but has no plan yet, seat reservation deferred.
ParentState = Literal["started", "seat_reserved"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"approved", "declined", "expired"})


class ParentApproval(BaseModel):
    """Core approval model. Represents a row in the parent_approvals table."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    child_first_name: str
    child_last_name: str
    child_birthdate: date
    child_email: EmailStr | None = None
    parent_email: EmailStr
    context: ApprovalContext
    invite_id: UUID | None = None
    cliq_id: UUID | None = None
    inviter_id: UUID | None = None
    existing_parent_id: UUID | None = None
    parent_state_hint: ParentStateHint = "new"
    child_id: UUID | None = None
    parent_id: UUID | None = None
    token_id: UUID | None = None
    status: ApprovalStatus
    parent_state: ParentState | None = None
    created_at: datetime
    expires_at: datetime
    approved_at: datetime | None = None
    declined_at: datetime | None = None

    def effective_status(self, now: datetime) -> ApprovalStatus:
        """Stored status, except a pending approval past its expiry reads as expired."""
        if self.status == "pending" and now >= self.expires_at:
            return "expired"
        return self.status

    def is_active(self, now: datetime) -> bool:
        return self.effective_status(now) == "pending"


class ChildInfo(BaseModel):
    """Identity of the child awaiting approval."""

    model_config = ConfigDict(extra="forbid")

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    birthdate: date
    email: EmailStr | None = None

    @field_validator("first_name", "last_name")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class ConsentInput(BaseModel):
    """The parent's explicit safety acknowledgements submitted with an approval."""

    model_config = ConfigDict(extra="forbid")

    red_alert_accepted: bool
    silent_monitoring_enabled: bool = False


class ParentProfile(BaseModel):
    """Details used when approval has to create a brand-new Parent account."""

    model_config = ConfigDict(extra="forbid")

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    birthdate: date | None = None


class CreateApprovalRequest(BaseModel):
    """Request to open a parent approval for a child."""

    model_config = ConfigDict(extra="forbid")

    child: ChildInfo
    parent_email: EmailStr
    context: ApprovalContext = "direct_signup"
    invite_id: UUID | None = None
    cliq_id: UUID | None = None
    child_id: UUID | None = None


class CreateApprovalResponse(BaseModel):
    approval_id: UUID
    status: ApprovalStatus
    expires_at: datetime
    email_sent: bool


class ApproveRequest(BaseModel):
    """Parent approves with the secret from their email."""

    model_config = ConfigDict(extra="forbid")

    token: str = Field(..., min_length=16, max_length=128)
    consent: ConsentInput
    parent: ParentProfile | None = None


class ResumeApprovalRequest(BaseModel):
    """Retry of an approval whose token was already consumed."""

    model_config = ConfigDict(extra="forbid")

    token: str = Field(..., min_length=16, max_length=128)
    consent: ConsentInput
    parent: ParentProfile | None = None


class DeclineRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    token: str = Field(..., min_length=16, max_length=128)


class ResendApprovalRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr


class ResendApprovalResponse(BaseModel):
    message: str = "If an approval exists for this email, a new link has been sent."


class ApprovalResult(BaseModel):
    """Outcome of a successful approval (or of re-reading one)."""

    approval_id: UUID
    parent_id: UUID
    child_id: UUID
    seat_reserved: bool
    slots_remaining: int | None = None
    created_parent: bool = False


class ApprovalStatusView(BaseModel):
    """What the approval page polls: child identity and effective status, no ids of other users."""

    approval_id: UUID
    status: ApprovalStatus
    child_first_name: str
    child_last_name: str
    child_birthdate: date
    context: ApprovalContext
    parent_state_hint: ParentStateHint
    expires_at: datetime

    @classmethod
    def from_approval(cls, approval: ParentApproval, now: datetime) -> ApprovalStatusView:
        return cls(
            approval_id=approval.id,
            status=approval.effective_status(now),
            child_first_name=approval.child_first_name,
            child_last_name=approval.child_last_name,
            child_birthdate=approval.child_birthdate,
            context=approval.context,
            parent_state_hint=approval.parent_state_hint,
            expires_at=approval.expires_at,
        )


class DeclineResponse(BaseModel):
    approval_id: UUID
    status: ApprovalStatus
    message: str
