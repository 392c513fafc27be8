"""Tests for parent links and the consent ledger."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from cliqsafe.db import system_conn
from cliqsafe.errors import (
    DuplicateParentLink,
    IncompatibleRole,
    LastParentLink,
    NotAuthorized,
    ParentLinkNotFound,
)
from cliqsafe.models.auth import Session
from cliqsafe.models.consent import ConsentUpdate
from cliqsafe.models.parent_link import PRIMARY_PERMISSIONS, Permissions
from cliqsafe.repos import consent_repo, parent_link_repo, user_repo
from cliqsafe.services import parent_service

pytestmark = pytest.mark.asyncio(loop_scope="session")


def _session(user) -> Session:
    now = datetime.now(UTC)
    return Session(user_id=user.id, issued_at=now, expires_at=now + timedelta(hours=1))


async def _family(make_user, red_alert=True):
    parent = await make_user("Parent")
    child = await make_user("Child")
    async with system_conn() as conn:
        await parent_link_repo.create(conn, parent.id, child.id, "primary", PRIMARY_PERMISSIONS)
        await consent_repo.upsert(
            conn,
            parent.id,
            child.id,
            red_alert_accepted=red_alert,
            silent_monitoring_enabled=False,
            consent_timestamp=datetime.now(UTC),
        )
    return parent, child


class TestLinks:
    async def test_add_coparent_upgrades_adult(self, make_user):
        parent, child = await _family(make_user)
        adult = await make_user("Adult")

        link = await parent_service.add_parent(_session(parent), child.id, adult.email, "secondary", Permissions())

        assert link.parent_id == adult.id
        assert link.role == "secondary"
        assert link.permissions.can_manage_child is False
        async with system_conn() as conn:
            assert (await user_repo.get(conn, adult.id)).role == "Parent"

        parents = await parent_service.list_parents(_session(parent), child.id)
        assert {p.parent_id for p in parents} == {parent.id, adult.id}

    async def test_duplicate_link(self, make_user):
        parent, child = await _family(make_user)
        other = await make_user("Parent")
        await parent_service.add_parent(_session(parent), child.id, other.email, "guardian", Permissions())

        with pytest.raises(DuplicateParentLink):
            await parent_service.add_parent(_session(parent), child.id, other.email, "guardian", Permissions())

    async def test_child_account_cannot_be_parent(self, make_user):
        parent, child = await _family(make_user)
        sibling = await make_user("Child")

        with pytest.raises(IncompatibleRole):
            await parent_service.add_parent(_session(parent), child.id, sibling.email, "secondary", Permissions())

    async def test_unknown_email(self, make_user):
        parent, child = await _family(make_user)
        with pytest.raises(ParentLinkNotFound):
            await parent_service.add_parent(
                _session(parent), child.id, "nobody-here@example.com", "secondary", Permissions()
            )

    async def test_unlinked_user_not_authorized(self, make_user):
        _, child = await _family(make_user)
        stranger = await make_user("Parent")

        with pytest.raises(NotAuthorized):
            await parent_service.list_parents(_session(stranger), child.id)

    async def test_secondary_without_manage_cannot_add(self, make_user):
        parent, child = await _family(make_user)
        secondary = await make_user("Parent")
        third = await make_user("Adult")
        await parent_service.add_parent(_session(parent), child.id, secondary.email, "secondary", Permissions())

        with pytest.raises(NotAuthorized):
            await parent_service.add_parent(_session(secondary), child.id, third.email, "secondary", Permissions())

    async def test_last_link_cannot_be_removed(self, make_user):
        parent, child = await _family(make_user)
        with pytest.raises(LastParentLink):
            await parent_service.remove_parent(_session(parent), child.id, parent.id)

    async def test_remove_and_update(self, make_user):
        parent, child = await _family(make_user)
        other = await make_user("Parent")
        await parent_service.add_parent(_session(parent), child.id, other.email, "secondary", Permissions())

        updated = await parent_service.update_link(
            _session(parent), child.id, other.id, role="guardian", permissions=PRIMARY_PERMISSIONS
        )
        assert updated.role == "guardian"
        assert updated.permissions.can_change_settings is True

        await parent_service.remove_parent(_session(parent), child.id, other.id)
        async with system_conn() as conn:
            assert await parent_link_repo.get(conn, other.id, child.id) is None

    async def test_update_missing_link(self, make_user):
        parent, child = await _family(make_user)
        stranger = await make_user("Parent")
        with pytest.raises(ParentLinkNotFound):
            await parent_service.update_link(_session(parent), child.id, stranger.id, role="guardian")


class TestConsent:
    async def test_valid_consent(self, make_user):
        _, child = await _family(make_user)
        check = await parent_service.has_valid_consent(child.id)
        assert check.has_consent is True

    async def test_revoke_is_recorded(self, make_user):
        parent, child = await _family(make_user)

        consent = await parent_service.update_consent(
            _session(parent), child.id, ConsentUpdate(red_alert_accepted=False)
        )

        assert consent.red_alert_accepted is False
        assert (await parent_service.has_valid_consent(child.id)).has_consent is False

    async def test_partial_update_keeps_other_flag(self, make_user):
        parent, child = await _family(make_user)
        consent = await parent_service.update_consent(
            _session(parent), child.id, ConsentUpdate(silent_monitoring_enabled=True)
        )
        assert consent.red_alert_accepted is True
        assert consent.silent_monitoring_enabled is True

    async def test_unlinked_parent_cannot_consent(self, make_user):
        _, child = await _family(make_user)
        stranger = await make_user("Parent")
        with pytest.raises(NotAuthorized):
            await parent_service.update_consent(
                _session(stranger), child.id, ConsentUpdate(red_alert_accepted=True)
            )

    async def test_consent_of_unlinked_parent_does_not_count(self, make_user):
        parent, child = await _family(make_user)
        other = await make_user("Parent")
        await parent_service.add_parent(_session(parent), child.id, other.email, "secondary", Permissions())
        await parent_service.update_consent(_session(parent), child.id, ConsentUpdate(red_alert_accepted=False))
        await parent_service.update_consent(_session(other), child.id, ConsentUpdate(red_alert_accepted=True))
        assert (await parent_service.has_valid_consent(child.id)).has_consent is True

        await parent_service.remove_parent(_session(parent), child.id, other.id)
        check = await parent_service.has_valid_consent(child.id)
        assert check.has_consent is False
