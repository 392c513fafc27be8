"""
Pydantic models for cliqsafe.

All data shapes defined here. No imports from db, repos, or routes.
"""

from cliqsafe.models.approval import (
    ApprovalResult,
    ApprovalStatusView,
    ChildInfo,
    ConsentInput,
    CreateApprovalRequest,
    ParentApproval,
    ParentProfile,
)
from cliqsafe.models.auth import Session
from cliqsafe.models.consent import ConsentCheck, ConsentUpdate, ParentConsent
from cliqsafe.models.parent_link import ParentLink, Permissions
from cliqsafe.models.plan import Availability, Membership, Plan, SeatReservation
from cliqsafe.models.token import ConsumedToken, IssuedToken, Token
from cliqsafe.models.user import User, UserPublic

__all__ = [
    # User models
    "User",
    "UserPublic",
    "Session",
    # Token models
    "Token",
    "IssuedToken",
    "ConsumedToken",
    # Approval models
    "ParentApproval",
    "ChildInfo",
    "ConsentInput",
    "ParentProfile",
    "CreateApprovalRequest",
    "ApprovalResult",
    "ApprovalStatusView",
    # Consent and link models
    "ParentConsent",
    "ConsentUpdate",
    "ConsentCheck",
    "ParentLink",
    "Permissions",
    # Plan models
    "Plan",
    "Membership",
    "SeatReservation",
    "Availability",
]
