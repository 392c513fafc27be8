"""
Parent approval state machine.

    pending ──approve──▶ approved
       │
       ├──decline──▶ declined
       │
       └──(now >= expires_at)──▶ expired   (computed on read, never written)

Terminal states never move. Approval is split into two transactions:

1. the approval-link token is consumed and committed on its own, so a
   secret can never be replayed whatever happens next;
2. the business transaction (parent account, child account, consent,
   parent link, seat, status) runs under the approval's row lock and
   commits or rolls back as one unit.

If step 2 fails, the approval stays pending and resume_approval() retries
it, authorised by the already-consumed secret. Every write in step 2 is an
upsert or a conditional update, so retries never duplicate rows or seats.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

from asyncpg import Connection

from cliqsafe import config
from cliqsafe.db import advisory_xact_lock, system_conn
from cliqsafe.errors import (
    ApprovalAlreadyProcessed,
    ApprovalNotFound,
    CapacityExceeded,
    ConsentNotAccepted,
    DuplicatePendingApproval,
    IncompatibleRole,
    NotAuthorized,
    TokenExpired,
    TokenNotFound,
)
from cliqsafe.models.approval import (
    ApprovalContext,
    ApprovalResult,
    ApprovalStatusView,
    ChildInfo,
    ConsentInput,
    ParentApproval,
    ParentProfile,
    ParentStateHint,
)
from cliqsafe.models.auth import Session
from cliqsafe.models.parent_link import PRIMARY_PERMISSIONS
from cliqsafe.models.plan import BillingCycle, Plan
from cliqsafe.models.token import IssuedToken
from cliqsafe.models.user import User, parent_upgrade
from cliqsafe.repos import approval_repo, consent_repo, parent_link_repo, plan_repo, user_repo
from cliqsafe.services import capacity_service, token_service
from cliqsafe.services.email import EmailSender, send_parent_approval

logger = logging.getLogger(__name__)


@dataclass
class CreatedApproval:
    approval: ParentApproval
    token: IssuedToken
    email_sent: bool


@dataclass
class RequestContext:
    """Audit details recorded alongside consent."""

    ip_address: str | None = None
    user_agent: str | None = None


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(UTC)


def _hint_for(user: User | None) -> tuple[ParentStateHint, UUID | None]:
    if user is None:
        return "new", None
    if user.role == "Parent":
        return "existing_parent", user.id
    if user.role == "Adult":
        return "existing_adult", user.id
    return "new", None


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


async def create_approval(
    child: ChildInfo,
    parent_email: str,
    context: ApprovalContext,
    invite_id: UUID | None = None,
    cliq_id: UUID | None = None,
    child_id: UUID | None = None,
    inviter_id: UUID | None = None,
    now: datetime | None = None,
    sender: EmailSender | None = None,
) -> CreatedApproval:
    """
    Open a pending approval and send its approval link to the parent.

    Raises:
        DuplicatePendingApproval: The same parent already has an active
            approval for a child with this name
    """
    now = _now(now)
    email = parent_email.strip().lower()
    expires_at = now + timedelta(days=config.settings.APPROVAL_TOKEN_EXPIRY_DAYS)

    async with system_conn() as conn:
        # Serialise creators for the same (parent, child name) so the
        # duplicate check and the insert cannot interleave.
        await advisory_xact_lock(
            conn,
            f"approval:{email}:{child.first_name.lower()}:{child.last_name.lower()}",
        )
        existing = await approval_repo.find_active_for_child(conn, email, child.first_name, child.last_name, now)
        if existing is not None:
            logger.info("Duplicate approval for %s refused (existing %s)", email, existing.id)
            raise DuplicatePendingApproval(existing.id)

        hint, existing_parent_id = _hint_for(await user_repo.get_by_email(conn, email))
        approval = await approval_repo.create(
            conn,
            child_first_name=child.first_name,
            child_last_name=child.last_name,
            child_birthdate=child.birthdate,
            parent_email=email,
            context=context,
            expires_at=expires_at,
            parent_state_hint=hint,
            existing_parent_id=existing_parent_id,
            invite_id=invite_id,
            cliq_id=cliq_id,
            inviter_id=inviter_id,
            child_id=child_id,
            child_email=child.email,
        )
        token = await token_service.issue(
            conn,
            "approval_link",
            approval.id,
            context_id=cliq_id,
            ttl=expires_at - now,
            now=now,
        )
        await approval_repo.set_token(conn, approval.id, token.id)
        approval = approval.model_copy(update={"token_id": token.id})

    logger.info("Created %s approval %s for parent %s (%s)", context, approval.id, email, hint)

    result = await send_parent_approval(
        email, token.raw_secret, child.first_name, child.last_name, sender=sender
    )
    if not result.success:
        logger.warning("Approval email for %s not delivered: %s", approval.id, result.error)

    return CreatedApproval(approval=approval, token=token, email_sent=result.success)


# ---------------------------------------------------------------------------
# Approve
# ---------------------------------------------------------------------------


async def approve_with_token(
    raw_secret: str,
    consent: ConsentInput,
    parent_profile: ParentProfile | None = None,
    session: Session | None = None,
    request_context: RequestContext | None = None,
    now: datetime | None = None,
) -> ApprovalResult:
    """
    Redeem an approval link and admit the child.

    Raises:
        TokenNotFound, TokenAlreadyUsed, TokenExpired: From the token store
        ApprovalAlreadyProcessed: The approval is not pending
        IncompatibleRole: The parent email belongs to a Child/Admin account
        NotAuthorized: A signed-in user acts on another parent's approval
        ConsentNotAccepted: Red Alert agreement missing
        CapacityExceeded: The parent's plan has no free seat
    """
    now = _now(now)
    consumed = await token_service.consume_now("approval_link", raw_secret, now=now)
    return await _complete(
        consumed.subject_id,
        consent,
        parent_profile,
        session,
        request_context or RequestContext(),
        now,
        return_recorded=False,
    )


async def resume_approval(
    approval_id: UUID,
    raw_secret: str,
    consent: ConsentInput,
    parent_profile: ParentProfile | None = None,
    session: Session | None = None,
    request_context: RequestContext | None = None,
    now: datetime | None = None,
) -> ApprovalResult:
    """
    Retry an approval whose link was already redeemed.

    An approved approval returns its recorded outcome without writing; a
    pending one runs the business transaction again.

    Raises:
        TokenNotFound: The secret was never redeemed or is not this approval's
        TokenExpired: The secret is past its expiry
        ApprovalAlreadyProcessed: The approval was declined or expired
    """
    now = _now(now)
    async with system_conn() as conn:
        token = await token_service.find_consumed(conn, "approval_link", raw_secret, now)
    if token.subject_id != approval_id:
        logger.warning("Resume of approval %s with a token bound to %s", approval_id, token.subject_id)
        raise TokenNotFound()

    return await _complete(
        approval_id,
        consent,
        parent_profile,
        session,
        request_context or RequestContext(),
        now,
        return_recorded=True,
    )


async def _complete(
    approval_id: UUID,
    consent: ConsentInput,
    parent_profile: ParentProfile | None,
    session: Session | None,
    request_context: RequestContext,
    now: datetime,
    return_recorded: bool,
) -> ApprovalResult:
    async with system_conn() as conn:
        approval = await approval_repo.get(conn, approval_id, for_update=True)
        if approval is None:
            raise ApprovalNotFound(f"approval {approval_id} not found")

        status = approval.effective_status(now)
        if status == "approved" and return_recorded:
            _check_session(session, approval.parent_id)
            return await _recorded_result(conn, approval)
        if status != "pending":
            logger.info("Approval %s is %s, refusing transition", approval_id, status)
            raise ApprovalAlreadyProcessed(approval_id, status)

        if not consent.red_alert_accepted:
            logger.info("Approval %s refused: Red Alert agreement not accepted", approval_id)
            raise ConsentNotAccepted(f"approval {approval_id} submitted without Red Alert acceptance")

        parent, created_parent = await _resolve_parent(conn, approval, parent_profile, session)
        child = await _resolve_child(conn, approval)

        await consent_repo.upsert(
            conn,
            parent.id,
            child.id,
            red_alert_accepted=True,
            silent_monitoring_enabled=consent.silent_monitoring_enabled,
            consent_timestamp=now,
            ip_address=request_context.ip_address,
            user_agent=request_context.user_agent,
        )
        await parent_link_repo.get_or_create(conn, parent.id, child.id, "primary", PRIMARY_PERMISSIONS)

        plan = await plan_repo.get_plan_by_owner(conn, parent.id)
        slots_remaining: int | None = None
        if plan is not None:
            reservation = await capacity_service.reserve_seat(conn, plan.id, child.id, "child", now)
            slots_remaining = reservation.slots_remaining
            parent_state = "seat_reserved"
        else:
            # No plan yet: the seat is taken once the parent picks one.
            parent_state = "started"
            await user_repo.set_setup_stage(conn, parent.id, "started")

        updated = await approval_repo.mark_approved(conn, approval_id, parent.id, child.id, parent_state, now)
        if updated is None:
            raise ApprovalAlreadyProcessed(approval_id, approval.status)

    logger.info(
        "Approved %s: parent %s, child %s, seat %s",
        approval_id,
        parent.id,
        child.id,
        parent_state,
    )
    return ApprovalResult(
        approval_id=approval_id,
        parent_id=parent.id,
        child_id=child.id,
        seat_reserved=parent_state == "seat_reserved",
        slots_remaining=slots_remaining,
        created_parent=created_parent,
    )


def _check_session(session: Session | None, account_id: UUID | None) -> None:
    if session is not None and session.user_id != account_id:
        raise NotAuthorized(f"session user {session.user_id} is not account {account_id}")


async def _recorded_result(conn: Connection, approval: ParentApproval) -> ApprovalResult:
    slots_remaining = None
    plan = await plan_repo.get_plan_by_owner(conn, approval.parent_id)
    if plan is not None:
        slots_remaining = max(plan.max_members - plan.current_members, 0)
    return ApprovalResult(
        approval_id=approval.id,
        parent_id=approval.parent_id,
        child_id=approval.child_id,
        seat_reserved=approval.parent_state == "seat_reserved",
        slots_remaining=slots_remaining,
    )


async def _resolve_parent(
    conn: Connection,
    approval: ParentApproval,
    profile: ParentProfile | None,
    session: Session | None,
) -> tuple[User, bool]:
    """
    Find or create the Parent account for the approval's email.

    Returns:
        (parent, created) where created is True for a brand-new account
    """
    email = str(approval.parent_email)
    await advisory_xact_lock(conn, f"account:{email}")
    user = await user_repo.get_by_email(conn, email, for_update=True)

    if user is None:
        if session is not None:
            # Signed in as someone else.
            raise NotAuthorized(f"session user {session.user_id} does not own {email}")
        user = await user_repo.create(
            conn,
            email,
            "Parent",
            first_name=profile.first_name if profile else None,
            last_name=profile.last_name if profile else None,
            birthdate=profile.birthdate if profile else None,
            is_approved=True,
        )
        logger.info("Created Parent account %s for approval %s", user.id, approval.id)
        return user, True

    _check_session(session, user.id)
    target = parent_upgrade(user.role)
    if target is None:
        logger.info("Approval %s refused: %s account cannot become Parent", approval.id, user.role)
        raise IncompatibleRole(user.role)
    if target != user.role:
        user = await user_repo.set_role(conn, user.id, target)
        logger.info("Upgraded account %s to %s for approval %s", user.id, target, approval.id)
    return user, False


async def _resolve_child(conn: Connection, approval: ParentApproval) -> User:
    """Activate the already-invited child, or create the child account for a direct signup."""
    child: User | None = None
    if approval.child_id is not None:
        child = await user_repo.get(conn, approval.child_id)
        if child is None:
            raise ApprovalNotFound(f"child {approval.child_id} of approval {approval.id} not found")
    elif approval.child_email is not None:
        child = await user_repo.get_by_email(conn, str(approval.child_email), for_update=True)

    if child is None:
        child = await user_repo.create(
            conn,
            approval.child_email,
            "Child",
            first_name=approval.child_first_name,
            last_name=approval.child_last_name,
            birthdate=approval.child_birthdate,
            is_approved=True,
        )
        logger.info("Created Child account %s for approval %s", child.id, approval.id)
        return child

    if child.role != "Child":
        raise IncompatibleRole(child.role)
    if not child.is_approved:
        child = await user_repo.set_approved(conn, child.id)
    return child


# ---------------------------------------------------------------------------
# Decline
# ---------------------------------------------------------------------------


async def decline_with_token(raw_secret: str, now: datetime | None = None) -> ParentApproval:
    """
    Redeem an approval link to decline. No account, link or seat is created.

    Raises:
        TokenNotFound, TokenAlreadyUsed, TokenExpired: From the token store
        ApprovalAlreadyProcessed: The approval is not pending
    """
    now = _now(now)
    consumed = await token_service.consume_now("approval_link", raw_secret, now=now)

    async with system_conn() as conn:
        approval = await approval_repo.get(conn, consumed.subject_id, for_update=True)
        if approval is None:
            raise ApprovalNotFound(f"approval {consumed.subject_id} not found")
        status = approval.effective_status(now)
        if status != "pending":
            raise ApprovalAlreadyProcessed(approval.id, status)
        declined = await approval_repo.mark_declined(conn, approval.id, now)
        if declined is None:
            raise ApprovalAlreadyProcessed(approval.id, status)

    logger.info("Declined approval %s", declined.id)
    return declined


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_approval_by_token(raw_secret: str, now: datetime | None = None) -> ApprovalStatusView:
    """
    Read-only status lookup for the approval page. Does not consume the token.

    Raises:
        TokenNotFound: Unknown secret
        TokenExpired: The secret is past its expiry
    """
    now = _now(now)
    async with system_conn() as conn:
        token = await token_service.peek(conn, "approval_link", raw_secret)
        if token is None:
            logger.warning("Approval status lookup rejected: not_found")
            raise TokenNotFound()
        if token.is_expired(now):
            logger.warning("Approval status lookup rejected: expired")
            raise TokenExpired()
        approval = await approval_repo.get(conn, token.subject_id)
    if approval is None:
        raise TokenNotFound()
    return ApprovalStatusView.from_approval(approval, now)


async def get_approvals_by_parent_email(email: str, now: datetime | None = None) -> list[ParentApproval]:
    """All approvals for a parent email, newest first, with effective statuses."""
    now = _now(now)
    async with system_conn() as conn:
        approvals = await approval_repo.list_by_parent_email(conn, email)
    return [a.model_copy(update={"status": a.effective_status(now)}) for a in approvals]


# ---------------------------------------------------------------------------
# Recovery and plan selection
# ---------------------------------------------------------------------------


async def resend_approval_link(
    email: str,
    now: datetime | None = None,
    sender: EmailSender | None = None,
) -> bool:
    """
    Issue a fresh approval link for the newest active approval of an email.

    Earlier links stay valid until their own expiry. The new link never
    outlives the approval.

    Returns:
        True if a link was issued (callers must not reveal this)
    """
    now = _now(now)
    email = email.strip().lower()

    async with system_conn() as conn:
        approvals = await approval_repo.list_by_parent_email(conn, email)
        pending = next((a for a in approvals if a.is_active(now)), None)
        if pending is None:
            logger.info("Approval link resend for %s: no active approval", email)
            return False
        token = await token_service.issue(
            conn,
            "approval_link",
            pending.id,
            context_id=pending.cliq_id,
            ttl=pending.expires_at - now,
            now=now,
        )
        await approval_repo.set_token(conn, pending.id, token.id)

    result = await send_parent_approval(
        email,
        token.raw_secret,
        pending.child_first_name,
        pending.child_last_name,
        resend_reminder=True,
        sender=sender,
    )
    if not result.success:
        logger.warning("Approval resend email for %s not delivered: %s", pending.id, result.error)
    logger.info("Re-issued approval link for approval %s", pending.id)
    return True


async def admit_deferred_children(conn: Connection, parent_id: UUID, now: datetime | None = None) -> list[UUID]:
    """
    Reserve seats for children approved before the parent had a plan.

    Stops at the first full plan; the remaining approvals stay deferred.

    Returns:
        Ids of the children admitted
    """
    now = _now(now)
    plan = await plan_repo.get_plan_by_owner(conn, parent_id)
    if plan is None:
        return []

    admitted: list[UUID] = []
    deferred = await approval_repo.list_deferred_for_parent(conn, parent_id)
    for approval in deferred:
        try:
            await capacity_service.reserve_seat(conn, plan.id, approval.child_id, "child", now)
        except CapacityExceeded:
            logger.info("Plan %s full, %d children still deferred", plan.id, len(deferred) - len(admitted))
            break
        await approval_repo.set_parent_state(conn, approval.id, "seat_reserved")
        admitted.append(approval.child_id)

    stage = "plan_selected" if len(admitted) == len(deferred) else "child_pending"
    await user_repo.set_setup_stage(conn, parent_id, stage)
    return admitted


async def select_plan(
    session: Session,
    plan_key: str,
    max_members: int,
    is_group_plan: bool = False,
    billing_cycle: BillingCycle = "monthly",
    stripe_subscription_id: str | None = None,
    now: datetime | None = None,
) -> tuple[Plan, list[UUID]]:
    """
    Create the signed-in user's plan and seat any children waiting on it.

    Raises:
        PlanAlreadyExists: The user already has a plan
    """
    now = _now(now)
    async with system_conn() as conn:
        plan = await capacity_service.create_plan(
            conn,
            session.user_id,
            plan_key,
            max_members,
            is_group_plan,
            billing_cycle,
            stripe_subscription_id,
            now,
        )
        admitted = await admit_deferred_children(conn, session.user_id, now)
        plan = await plan_repo.get_plan(conn, plan.id)
    return plan, admitted
