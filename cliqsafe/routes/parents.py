"""Parent-facing routes for a child's linked parents and consent."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status

from cliqsafe.auth import get_current_session
from cliqsafe.errors import CliqsafeError, raise_http
from cliqsafe.middleware.rate_limit import client_ip
from cliqsafe.models.auth import Session
from cliqsafe.models.consent import ConsentCheck, ConsentUpdate, ParentConsent
from cliqsafe.models.parent_link import AddParentRequest, ParentLink, UpdateParentLinkRequest
from cliqsafe.services import parent_service

router = APIRouter(prefix="/api/parent/children", tags=["parent"])


@router.get("/{child_id}/parents", status_code=200)
async def list_parents(
    child_id: UUID,
    session: Session = Depends(get_current_session),
) -> list[ParentLink]:
    try:
        return await parent_service.list_parents(session, child_id)
    except CliqsafeError as e:
        raise_http(e)


@router.post("/{child_id}/parents", status_code=201)
async def add_parent(
    child_id: UUID,
    req: AddParentRequest,
    session: Session = Depends(get_current_session),
) -> ParentLink:
    """Link another existing adult account as co-parent or guardian."""
    try:
        return await parent_service.add_parent(session, child_id, req.parent_email, req.role, req.permissions)
    except CliqsafeError as e:
        raise_http(e)


@router.delete("/{child_id}/parents/{parent_id}", status_code=204)
async def remove_parent(
    child_id: UUID,
    parent_id: UUID,
    session: Session = Depends(get_current_session),
) -> None:
    try:
        await parent_service.remove_parent(session, child_id, parent_id)
    except CliqsafeError as e:
        raise_http(e)


@router.patch("/{child_id}/parents/{parent_id}", status_code=200)
async def update_parent(
    child_id: UUID,
    parent_id: UUID,
    req: UpdateParentLinkRequest,
    session: Session = Depends(get_current_session),
) -> ParentLink:
    if req.role is None and req.permissions is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Nothing to update.")
    try:
        return await parent_service.update_link(
            session, child_id, parent_id, role=req.role, permissions=req.permissions
        )
    except CliqsafeError as e:
        raise_http(e)


@router.get("/{child_id}/consent", status_code=200)
async def get_consent(
    child_id: UUID,
    session: Session = Depends(get_current_session),
) -> ParentConsent:
    try:
        consent = await parent_service.get_consent(session, child_id)
    except CliqsafeError as e:
        raise_http(e)
    if consent is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No consent on record.")
    return consent


@router.put("/{child_id}/consent", status_code=200)
async def update_consent(
    child_id: UUID,
    req: ConsentUpdate,
    request: Request,
    session: Session = Depends(get_current_session),
) -> ParentConsent:
    try:
        return await parent_service.update_consent(
            session,
            child_id,
            req,
            ip_address=client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
    except CliqsafeError as e:
        raise_http(e)


@router.get("/{child_id}/consent/status", status_code=200)
async def consent_status(
    child_id: UUID,
    session: Session = Depends(get_current_session),
) -> ConsentCheck:
    """Whether any linked parent currently holds Red Alert consent for the child."""
    try:
        await parent_service.list_parents(session, child_id)
    except CliqsafeError as e:
        raise_http(e)
    return await parent_service.has_valid_consent(child_id)
