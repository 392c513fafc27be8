"""Parent approval routes: create, inspect, approve, decline, resume, resend."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from cliqsafe import config
from cliqsafe.auth import get_current_user, get_optional_session, set_session_cookie
from cliqsafe.errors import CliqsafeError, raise_http
from cliqsafe.middleware.rate_limit import client_ip, rate_limiter
from cliqsafe.models.approval import (
    ApprovalResult,
    ApprovalStatusView,
    ApproveRequest,
    CreateApprovalRequest,
    CreateApprovalResponse,
    DeclineRequest,
    DeclineResponse,
    ParentApproval,
    ResendApprovalRequest,
    ResendApprovalResponse,
    ResumeApprovalRequest,
)
from cliqsafe.models.auth import Session
from cliqsafe.models.user import User
from cliqsafe.services import approval_service
from cliqsafe.services.approval_service import RequestContext

router = APIRouter(prefix="/api/parent-approvals", tags=["parent-approvals"])


def _request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


def _limit_verify(request: Request) -> None:
    rate_limiter.enforce(
        f"verify:ip:{client_ip(request)}",
        config.settings.TOKEN_VERIFY_RATE_LIMIT_PER_IP,
        1,
        "Too many verification attempts. Please wait a moment.",
    )


@router.post("", status_code=201)
async def create_approval(
    req: CreateApprovalRequest,
    session: Session | None = Depends(get_optional_session),
) -> CreateApprovalResponse:
    """Open a parent approval for a child and email the parent."""
    try:
        created = await approval_service.create_approval(
            req.child,
            req.parent_email,
            req.context,
            invite_id=req.invite_id,
            cliq_id=req.cliq_id,
            child_id=req.child_id,
            inviter_id=session.user_id if session else None,
        )
    except CliqsafeError as e:
        raise_http(e)

    return CreateApprovalResponse(
        approval_id=created.approval.id,
        status=created.approval.status,
        expires_at=created.approval.expires_at,
        email_sent=created.email_sent,
    )


@router.get("/check", status_code=200)
async def check_approval(token: str, request: Request) -> ApprovalStatusView:
    """Read-only status for the approval page. Does not use up the link."""
    _limit_verify(request)
    try:
        return await approval_service.get_approval_by_token(token)
    except CliqsafeError as e:
        raise_http(e)


@router.get("", status_code=200)
async def list_approvals(email: str, user: User = Depends(get_current_user)) -> list[ParentApproval]:
    """Approvals addressed to the signed-in user's own email."""
    if user.email is None or email.strip().lower() != str(user.email).lower():
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You can only view your own approvals.")
    return await approval_service.get_approvals_by_parent_email(email)


@router.post("/approve", status_code=200)
async def approve(
    req: ApproveRequest,
    request: Request,
    response: Response,
    session: Session | None = Depends(get_optional_session),
) -> ApprovalResult:
    """
    Approve the child with the link secret.

    A newly created parent account is signed in on the spot.
    """
    _limit_verify(request)
    try:
        result = await approval_service.approve_with_token(
            req.token,
            req.consent,
            parent_profile=req.parent,
            session=session,
            request_context=_request_context(request),
        )
    except CliqsafeError as e:
        raise_http(e)

    if result.created_parent:
        set_session_cookie(response, result.parent_id)
    return result


@router.post("/{approval_id}/resume", status_code=200)
async def resume(
    approval_id: UUID,
    req: ResumeApprovalRequest,
    request: Request,
    response: Response,
    session: Session | None = Depends(get_optional_session),
) -> ApprovalResult:
    """Finish an approval whose link was already used, e.g. after upgrading a full plan."""
    _limit_verify(request)
    try:
        result = await approval_service.resume_approval(
            approval_id,
            req.token,
            req.consent,
            parent_profile=req.parent,
            session=session,
            request_context=_request_context(request),
        )
    except CliqsafeError as e:
        raise_http(e)

    if result.created_parent:
        set_session_cookie(response, result.parent_id)
    return result


@router.post("/decline", status_code=200)
async def decline(req: DeclineRequest, request: Request) -> DeclineResponse:
    _limit_verify(request)
    try:
        approval = await approval_service.decline_with_token(req.token)
    except CliqsafeError as e:
        raise_http(e)
    return DeclineResponse(
        approval_id=approval.id,
        status=approval.status,
        message="The request has been declined. No account was created.",
    )


@router.post("/resend", status_code=200)
async def resend(req: ResendApprovalRequest, request: Request) -> ResendApprovalResponse:
    """
    Send a fresh approval link. The response never says whether one existed.

    Rate limit: 3 per email per hour.
    """
    email = req.email.lower()
    rate_limiter.enforce(
        f"resend:email:{email}",
        config.settings.APPROVAL_RESEND_RATE_LIMIT_PER_EMAIL,
        60,
        "Too many requests. Please check your inbox or try again later.",
    )
    rate_limiter.enforce(
        f"resend:ip:{client_ip(request)}",
        config.settings.MAGIC_LINK_RATE_LIMIT_PER_IP,
        60,
        "Too many requests from this IP.",
    )
    await approval_service.resend_approval_link(email)
    return ResendApprovalResponse()
