"""
Domain errors for the consent and onboarding workflow.

Services raise these; routes translate them to HTTP responses. Token errors
are precise here (and in logs) but collapse to one generic message for
callers so a response never reveals whether a link exists, was used, or
expired.
"""

from __future__ import annotations

from typing import NoReturn
from uuid import UUID

from fastapi import HTTPException

INVALID_LINK_MESSAGE = "Invalid or expired link. Please request a new one."


class CliqsafeError(Exception):
    """Base class for all workflow errors."""

    status_code: int = 400
    public_message: str = "Request could not be completed."


# ---------------------------------------------------------------------------
# Token errors
# ---------------------------------------------------------------------------


class TokenError(CliqsafeError):
    """A presented secret could not be redeemed."""

    status_code = 401
    public_message = INVALID_LINK_MESSAGE
    kind: str = "token_error"


class TokenNotFound(TokenError):
    """No token matches the presented secret (or kind/context differ)."""

    kind = "not_found"


class TokenAlreadyUsed(TokenError):
    """The token was consumed before."""

    kind = "already_used"


class TokenExpired(TokenError):
    """The token is past its expiry."""

    kind = "expired"


# ---------------------------------------------------------------------------
# Approval errors
# ---------------------------------------------------------------------------


class ApprovalNotFound(CliqsafeError):
    status_code = 404
    public_message = "Approval not found."


class ApprovalAlreadyProcessed(CliqsafeError):
    """The approval is no longer pending (approved, declined or expired)."""

    status_code = 409
    public_message = "This approval has already been processed."

    def __init__(self, approval_id: UUID, status: str):
        super().__init__(f"approval {approval_id} is {status}")
        self.approval_id = approval_id
        self.status = status


class DuplicatePendingApproval(CliqsafeError):
    status_code = 409
    public_message = "An approval request for this child is already waiting on this parent."

    def __init__(self, existing_id: UUID):
        super().__init__(f"pending approval {existing_id} already exists")
        self.existing_id = existing_id


class ConsentNotAccepted(CliqsafeError):
    status_code = 400
    public_message = "The Red Alert agreement must be accepted to approve this child."


class IncompatibleRole(CliqsafeError):
    """An account exists for the email with a role that cannot become Parent."""

    status_code = 409
    public_message = "An account with this email already exists with an incompatible role."

    def __init__(self, role: str):
        super().__init__(f"role {role} cannot be upgraded to Parent")
        self.role = role


class NotAuthorized(CliqsafeError):
    status_code = 403
    public_message = "You are not allowed to act on this request."


# ---------------------------------------------------------------------------
# Plan and link errors
# ---------------------------------------------------------------------------


class PlanNotFound(CliqsafeError):
    status_code = 404
    public_message = "Plan not found."


class PlanAlreadyExists(CliqsafeError):
    status_code = 409
    public_message = "This account already has a plan."


class CapacityExceeded(CliqsafeError):
    """The plan has no free seat. Surfaced verbatim so the UI can offer an upgrade."""

    status_code = 409
    public_message = "This plan has no seats left."

    def __init__(self, plan_id: UUID, slots_remaining: int, max_members: int, current_members: int):
        super().__init__(f"plan {plan_id} is full ({current_members}/{max_members})")
        self.plan_id = plan_id
        self.slots_remaining = slots_remaining
        self.max_members = max_members
        self.current_members = current_members


class ParentLinkNotFound(CliqsafeError):
    status_code = 404
    public_message = "Parent link not found."


class DuplicateParentLink(CliqsafeError):
    status_code = 409
    public_message = "This parent is already linked to this child."


class LastParentLink(CliqsafeError):
    status_code = 409
    public_message = "A child must keep at least one linked parent."


# ---------------------------------------------------------------------------
# HTTP translation
# ---------------------------------------------------------------------------


def raise_http(exc: CliqsafeError) -> NoReturn:
    """
    Re-raise a domain error as an HTTPException.

    Token errors all read as the same generic link message. Capacity errors
    carry their numbers so the caller can offer an upgrade.
    """
    detail: str | dict = exc.public_message
    if isinstance(exc, CapacityExceeded):
        detail = {
            "message": exc.public_message,
            "slots_remaining": exc.slots_remaining,
            "max_members": exc.max_members,
            "current_members": exc.current_members,
        }
    elif isinstance(exc, DuplicatePendingApproval):
        detail = {"message": exc.public_message, "existing_approval_id": str(exc.existing_id)}
    raise HTTPException(status_code=exc.status_code, detail=detail) from exc
