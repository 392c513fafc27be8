"""
Parent links and consent for an already-approved child.

The acting parent always comes from an explicit Session and must hold a
link to the child. Managing other parents needs `can_manage_child`;
reading and re-consenting only need the link itself.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from uuid import UUID

from asyncpg import Connection

from cliqsafe.db import advisory_xact_lock, system_conn
from cliqsafe.errors import (
    DuplicateParentLink,
    IncompatibleRole,
    LastParentLink,
    NotAuthorized,
    ParentLinkNotFound,
)
from cliqsafe.models.auth import Session
from cliqsafe.models.consent import ConsentCheck, ConsentUpdate, ParentConsent
from cliqsafe.models.parent_link import LinkRole, ParentLink, Permissions
from cliqsafe.models.user import parent_upgrade
from cliqsafe.repos import consent_repo, parent_link_repo, user_repo

logger = logging.getLogger(__name__)


async def _require_link(conn: Connection, session: Session, child_id: UUID, manage: bool = False) -> ParentLink:
    link = await parent_link_repo.get(conn, session.user_id, child_id)
    if link is None:
        raise NotAuthorized(f"user {session.user_id} is not linked to child {child_id}")
    if manage and not link.permissions.can_manage_child:
        raise NotAuthorized(f"user {session.user_id} cannot manage child {child_id}")
    return link


async def list_parents(session: Session, child_id: UUID) -> list[ParentLink]:
    async with system_conn() as conn:
        await _require_link(conn, session, child_id)
        return await parent_link_repo.list_by_child(conn, child_id)


async def list_children(session: Session) -> list[ParentLink]:
    async with system_conn() as conn:
        return await parent_link_repo.list_by_parent(conn, session.user_id)


async def add_parent(
    session: Session,
    child_id: UUID,
    parent_email: str,
    role: LinkRole,
    permissions: Permissions,
) -> ParentLink:
    """
    Link another existing adult account to a child.

    Raises:
        NotAuthorized: The acting parent may not manage this child
        ParentLinkNotFound: No account exists for the email
        IncompatibleRole: The account can never become a Parent
        DuplicateParentLink: The account is already linked
    """
    email = parent_email.strip().lower()
    async with system_conn() as conn:
        await _require_link(conn, session, child_id, manage=True)
        await advisory_xact_lock(conn, f"account:{email}")

        user = await user_repo.get_by_email(conn, email, for_update=True)
        if user is None:
            raise ParentLinkNotFound(f"no account for {email}")
        target = parent_upgrade(user.role)
        if target is None:
            raise IncompatibleRole(user.role)
        if target != user.role:
            await user_repo.set_role(conn, user.id, target)
            logger.info("Upgraded account %s to %s as co-parent of %s", user.id, target, child_id)

        link = await parent_link_repo.create(conn, user.id, child_id, role, permissions)
        if link is None:
            raise DuplicateParentLink(f"user {user.id} is already linked to child {child_id}")

    logger.info("Linked %s parent %s to child %s (by %s)", role, user.id, child_id, session.user_id)
    return link


async def remove_parent(session: Session, child_id: UUID, parent_id: UUID) -> None:
    """
    Unlink a parent. A child always keeps at least one parent.

    Raises:
        NotAuthorized, ParentLinkNotFound, LastParentLink
    """
    async with system_conn() as conn:
        await _require_link(conn, session, child_id, manage=True)
        # Serialise removals for the child so two parents cannot unlink each other at once.
        await advisory_xact_lock(conn, f"child-links:{child_id}")
        if await parent_link_repo.get(conn, parent_id, child_id) is None:
            raise ParentLinkNotFound(f"parent {parent_id} is not linked to child {child_id}")
        if await parent_link_repo.count_by_child(conn, child_id) <= 1:
            raise LastParentLink(f"child {child_id} would have no parent")
        await parent_link_repo.delete(conn, parent_id, child_id)

    logger.info("Unlinked parent %s from child %s (by %s)", parent_id, child_id, session.user_id)


async def update_link(
    session: Session,
    child_id: UUID,
    parent_id: UUID,
    role: LinkRole | None = None,
    permissions: Permissions | None = None,
) -> ParentLink:
    """
    Change another parent's link role and/or permissions.

    Raises:
        NotAuthorized, ParentLinkNotFound
    """
    async with system_conn() as conn:
        await _require_link(conn, session, child_id, manage=True)
        link = await parent_link_repo.get(conn, parent_id, child_id)
        if link is None:
            raise ParentLinkNotFound(f"parent {parent_id} is not linked to child {child_id}")
        if permissions is not None:
            link = await parent_link_repo.update_permissions(conn, parent_id, child_id, permissions)
        if role is not None:
            link = await parent_link_repo.update_role(conn, parent_id, child_id, role)

    logger.info("Updated link of parent %s to child %s (by %s)", parent_id, child_id, session.user_id)
    return link


async def get_consent(session: Session, child_id: UUID) -> ParentConsent | None:
    """The acting parent's own consent record for a child."""
    async with system_conn() as conn:
        await _require_link(conn, session, child_id)
        return await consent_repo.get(conn, session.user_id, child_id)


async def update_consent(
    session: Session,
    child_id: UUID,
    update: ConsentUpdate,
    ip_address: str | None = None,
    user_agent: str | None = None,
    now: datetime | None = None,
) -> ParentConsent:
    """
    Re-consent by a linked parent. Revoking Red Alert is allowed and recorded.

    Raises:
        NotAuthorized: The acting user is not linked to the child
    """
    now = now or datetime.now(UTC)
    async with system_conn() as conn:
        await _require_link(conn, session, child_id)
        current = await consent_repo.get(conn, session.user_id, child_id)
        red_alert = update.red_alert_accepted
        if red_alert is None:
            red_alert = current.red_alert_accepted if current else False
        silent = update.silent_monitoring_enabled
        if silent is None:
            silent = current.silent_monitoring_enabled if current else False

        consent = await consent_repo.upsert(
            conn,
            session.user_id,
            child_id,
            red_alert_accepted=red_alert,
            silent_monitoring_enabled=silent,
            consent_timestamp=now,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    if not consent.red_alert_accepted:
        logger.warning("Parent %s revoked Red Alert consent for child %s", session.user_id, child_id)
    else:
        logger.info("Parent %s refreshed consent for child %s", session.user_id, child_id)
    return consent


async def has_valid_consent(child_id: UUID) -> ConsentCheck:
    async with system_conn() as conn:
        if await consent_repo.has_red_alert_consent(conn, child_id):
            return ConsentCheck(has_consent=True, reason="A linked parent accepted the Red Alert agreement")
        if await parent_link_repo.count_by_child(conn, child_id) == 0:
            return ConsentCheck(has_consent=False, reason="No parent is linked to this child")
    return ConsentCheck(has_consent=False, reason="No linked parent has accepted the Red Alert agreement")
