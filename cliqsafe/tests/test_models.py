"""Tests for model-level rules: role upgrades, lazy expiry, token state, request validation."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from uuid import uuid4

import pytest
from pydantic import ValidationError

from cliqsafe.models.approval import ApprovalStatusView, ChildInfo, ParentApproval
from cliqsafe.models.token import Token
from cliqsafe.models.user import ROLES, parent_upgrade

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _approval(**overrides) -> ParentApproval:
    fields = {
        "id": uuid4(),
        "child_first_name": "Maya",
        "child_last_name": "Lopez",
        "child_birthdate": date(2014, 2, 3),
        "parent_email": "parent@example.com",
        "context": "direct_signup",
        "status": "pending",
        "created_at": NOW,
        "expires_at": NOW + timedelta(days=7),
    }
    fields.update(overrides)
    return ParentApproval(**fields)


class TestParentUpgrade:
    def test_adult_becomes_parent(self):
        assert parent_upgrade("Adult") == "Parent"

    def test_parent_stays_parent(self):
        assert parent_upgrade("Parent") == "Parent"

    @pytest.mark.parametrize("role", ["Child", "Admin"])
    def test_incompatible_roles_refused(self, role):
        assert parent_upgrade(role) is None

    def test_every_role_has_an_entry(self):
        for role in ROLES:
            parent_upgrade(role)


class TestEffectiveStatus:
    def test_pending_before_expiry(self):
        approval = _approval()
        assert approval.effective_status(NOW) == "pending"
        assert approval.is_active(NOW)

    def test_pending_reads_expired_at_expiry(self):
        approval = _approval()
        assert approval.effective_status(approval.expires_at) == "expired"
        assert not approval.is_active(NOW + timedelta(days=8))

    @pytest.mark.parametrize("status", ["approved", "declined"])
    def test_terminal_status_unchanged_by_expiry(self, status):
        approval = _approval(status=status)
        assert approval.effective_status(NOW + timedelta(days=30)) == status

    def test_status_view_uses_effective_status(self):
        approval = _approval()
        view = ApprovalStatusView.from_approval(approval, NOW + timedelta(days=8))
        assert view.status == "expired"
        assert view.approval_id == approval.id
        assert "parent_email" not in view.model_dump()


class TestTokenState:
    def _token(self, **overrides) -> Token:
        fields = {
            "id": uuid4(),
            "kind": "magic_link",
            "secret_hash": "ab" * 32,
            "subject_id": uuid4(),
            "issued_at": NOW,
            "expires_at": NOW + timedelta(minutes=15),
        }
        fields.update(overrides)
        return Token(**fields)

    def test_fresh_token(self):
        token = self._token()
        assert not token.is_expired(NOW)
        assert not token.is_consumed()

    def test_expiry_is_inclusive(self):
        token = self._token()
        assert token.is_expired(token.expires_at)

    def test_consumed(self):
        assert self._token(consumed_at=NOW).is_consumed()


class TestChildInfo:
    def test_names_are_stripped(self):
        child = ChildInfo(first_name="  Maya ", last_name=" Lopez", birthdate=date(2014, 2, 3))
        assert child.first_name == "Maya"
        assert child.last_name == "Lopez"

    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            ChildInfo(first_name="   ", last_name="Lopez", birthdate=date(2014, 2, 3))

    def test_unknown_fields_rejected(self):
        with pytest.raises(ValidationError):
            ChildInfo(first_name="Maya", last_name="Lopez", birthdate=date(2014, 2, 3), nickname="M")
