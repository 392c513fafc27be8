"""Tests for token failure classification and domain-to-HTTP translation."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from fastapi import HTTPException

from cliqsafe.errors import (
    INVALID_LINK_MESSAGE,
    ApprovalAlreadyProcessed,
    CapacityExceeded,
    DuplicatePendingApproval,
    IncompatibleRole,
    TokenAlreadyUsed,
    TokenExpired,
    TokenNotFound,
    raise_http,
)
from cliqsafe.models.token import Token
from cliqsafe.services.token_service import _classify_failure, default_ttl

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _token(**overrides) -> Token:
    fields = {
        "id": uuid4(),
        "kind": "approval_link",
        "secret_hash": "cd" * 32,
        "subject_id": uuid4(),
        "issued_at": NOW - timedelta(days=1),
        "expires_at": NOW + timedelta(days=6),
    }
    fields.update(overrides)
    return Token(**fields)


class TestClassifyFailure:
    def test_missing(self):
        assert isinstance(_classify_failure(None, "approval_link", None, NOW), TokenNotFound)

    def test_wrong_kind_looks_missing(self):
        error = _classify_failure(_token(kind="magic_link"), "approval_link", None, NOW)
        assert isinstance(error, TokenNotFound)

    def test_wrong_context_looks_missing(self):
        error = _classify_failure(_token(context_id=uuid4()), "approval_link", uuid4(), NOW)
        assert isinstance(error, TokenNotFound)

    def test_used(self):
        error = _classify_failure(_token(consumed_at=NOW - timedelta(hours=1)), "approval_link", None, NOW)
        assert isinstance(error, TokenAlreadyUsed)

    def test_expired(self):
        error = _classify_failure(_token(expires_at=NOW - timedelta(seconds=1)), "approval_link", None, NOW)
        assert isinstance(error, TokenExpired)

    def test_expiry_dominates_use(self):
        token = _token(consumed_at=NOW - timedelta(days=2), expires_at=NOW - timedelta(days=1))
        assert isinstance(_classify_failure(token, "approval_link", None, NOW), TokenExpired)


class TestDefaultTtl:
    def test_per_kind(self):
        assert default_ttl("magic_link") == timedelta(minutes=15)
        assert default_ttl("approval_link") == timedelta(days=7)
        assert default_ttl("invite_code") == timedelta(days=7)


class TestRaiseHttp:
    @pytest.mark.parametrize("error", [TokenNotFound(), TokenAlreadyUsed(), TokenExpired()])
    def test_token_errors_are_indistinguishable(self, error):
        with pytest.raises(HTTPException) as exc_info:
            raise_http(error)
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == INVALID_LINK_MESSAGE

    def test_capacity_numbers_are_exposed(self):
        with pytest.raises(HTTPException) as exc_info:
            raise_http(CapacityExceeded(uuid4(), slots_remaining=0, max_members=1, current_members=1))
        assert exc_info.value.status_code == 409
        assert exc_info.value.detail["slots_remaining"] == 0
        assert exc_info.value.detail["max_members"] == 1
        assert exc_info.value.detail["current_members"] == 1

    def test_duplicate_approval_points_at_existing(self):
        existing = uuid4()
        with pytest.raises(HTTPException) as exc_info:
            raise_http(DuplicatePendingApproval(existing))
        assert exc_info.value.status_code == 409
        assert exc_info.value.detail["existing_approval_id"] == str(existing)

    @pytest.mark.parametrize(
        ("error", "status_code"),
        [
            (ApprovalAlreadyProcessed(uuid4(), "declined"), 409),
            (IncompatibleRole("Child"), 409),
        ],
    )
    def test_status_codes(self, error, status_code):
        with pytest.raises(HTTPException) as exc_info:
            raise_http(error)
        assert exc_info.value.status_code == status_code
        assert exc_info.value.detail == error.public_message
