"""Tests for token issuance, single-use redemption and the sweep."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
import pytest_asyncio

from cliqsafe.db import system_conn
from cliqsafe.errors import TokenAlreadyUsed, TokenError, TokenExpired, TokenNotFound
from cliqsafe.repos import token_repo
from cliqsafe.services import auth_service, token_service

pytestmark = pytest.mark.asyncio(loop_scope="session")


async def _issue(kind="magic_link", subject_id=None, context_id=None, ttl=None, now=None):
    async with system_conn() as conn:
        return await token_service.issue(conn, kind, subject_id or uuid4(), context_id=context_id, ttl=ttl, now=now)


@pytest_asyncio.fixture(loop_scope="session")
async def cleanup_tokens(initialize_pool):
    subjects = []
    yield subjects
    async with system_conn() as conn:
        await conn.execute("DELETE FROM tokens WHERE subject_id = ANY($1::uuid[])", subjects)


class TestIssue:
    async def test_only_hash_is_stored(self, cleanup_tokens):
        subject = uuid4()
        cleanup_tokens.append(subject)
        issued = await _issue(subject_id=subject)

        async with system_conn() as conn:
            stored = await token_repo.get(conn, issued.id)
            row = await conn.fetchrow("SELECT * FROM tokens WHERE id = $1", issued.id)

        assert stored.secret_hash == token_repo.hash_secret(issued.raw_secret)
        assert issued.raw_secret not in [str(v) for v in dict(row).values()]
        assert len(issued.raw_secret) >= 43  # 32 bytes, base64url

    async def test_default_ttl_per_kind(self, cleanup_tokens):
        now = datetime.now(UTC)
        subject = uuid4()
        cleanup_tokens.append(subject)
        magic = await _issue("magic_link", subject, now=now)
        approval = await _issue("approval_link", subject, now=now)
        assert magic.expires_at - now == timedelta(minutes=15)
        assert approval.expires_at - now == timedelta(days=7)

    async def test_non_positive_ttl_rejected(self, initialize_pool):
        with pytest.raises(ValueError):
            await _issue(ttl=timedelta(0))


class TestConsume:
    async def test_consume_once(self, cleanup_tokens):
        subject = uuid4()
        cleanup_tokens.append(subject)
        issued = await _issue("approval_link", subject)

        consumed = await token_service.consume_now("approval_link", issued.raw_secret)
        assert consumed.subject_id == subject
        assert consumed.token_id == issued.id

        with pytest.raises(TokenAlreadyUsed):
            await token_service.consume_now("approval_link", issued.raw_secret)

    async def test_unknown_secret(self, initialize_pool):
        with pytest.raises(TokenNotFound):
            await token_service.consume_now("approval_link", "no-such-secret-" + uuid4().hex)

    async def test_wrong_kind_is_not_found(self, cleanup_tokens):
        subject = uuid4()
        cleanup_tokens.append(subject)
        issued = await _issue("magic_link", subject)
        with pytest.raises(TokenNotFound):
            await token_service.consume_now("approval_link", issued.raw_secret)
        # Still usable for its own kind
        await token_service.consume_now("magic_link", issued.raw_secret)

    async def test_context_mismatch_is_not_found(self, cleanup_tokens):
        subject, cliq = uuid4(), uuid4()
        cleanup_tokens.append(subject)
        issued = await _issue("invite_code", subject, context_id=cliq)

        with pytest.raises(TokenNotFound):
            await token_service.consume_now("invite_code", issued.raw_secret, expected_context=uuid4())
        consumed = await token_service.consume_now("invite_code", issued.raw_secret, expected_context=cliq)
        assert consumed.context_id == cliq

    async def test_expired_after_eight_days(self, cleanup_tokens):
        subject = uuid4()
        cleanup_tokens.append(subject)
        issued_at = datetime.now(UTC) - timedelta(days=8)
        issued = await _issue("approval_link", subject, now=issued_at)

        with pytest.raises(TokenExpired):
            await token_service.consume_now("approval_link", issued.raw_secret)

    async def test_expiry_dominates_consumed(self, cleanup_tokens):
        subject = uuid4()
        cleanup_tokens.append(subject)
        issued_at = datetime.now(UTC) - timedelta(minutes=20)
        issued = await _issue("magic_link", subject, now=issued_at)
        await token_service.consume_now("magic_link", issued.raw_secret, now=issued_at + timedelta(minutes=1))

        with pytest.raises(TokenExpired):
            await token_service.consume_now("magic_link", issued.raw_secret)

    async def test_concurrent_consumes_single_winner(self, cleanup_tokens):
        subject = uuid4()
        cleanup_tokens.append(subject)
        issued = await _issue("approval_link", subject)

        results = await asyncio.gather(
            *(token_service.consume_now("approval_link", issued.raw_secret) for _ in range(8)),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert all(isinstance(f, TokenAlreadyUsed) for f in failures)

    async def test_failed_consume_in_rolled_back_transaction_leaves_token(self, cleanup_tokens):
        subject = uuid4()
        cleanup_tokens.append(subject)
        issued = await _issue("approval_link", subject)

        with pytest.raises(RuntimeError):
            async with system_conn() as conn:
                await token_service.consume(conn, "approval_link", issued.raw_secret)
                raise RuntimeError("business step failed")

        # consume() joins the caller's transaction, so the rollback undid it
        await token_service.consume_now("approval_link", issued.raw_secret)


class TestFindConsumed:
    async def test_requires_consumption(self, cleanup_tokens):
        subject = uuid4()
        cleanup_tokens.append(subject)
        issued = await _issue("approval_link", subject)

        async with system_conn() as conn:
            with pytest.raises(TokenNotFound):
                await token_service.find_consumed(conn, "approval_link", issued.raw_secret)

        await token_service.consume_now("approval_link", issued.raw_secret)
        async with system_conn() as conn:
            token = await token_service.find_consumed(conn, "approval_link", issued.raw_secret)
        assert token.id == issued.id


class TestSweep:
    async def test_sweep_removes_only_expired(self, cleanup_tokens):
        subject = uuid4()
        cleanup_tokens.append(subject)
        old = await _issue("magic_link", subject, now=datetime.now(UTC) - timedelta(hours=1))
        fresh = await _issue("magic_link", subject)

        assert await token_service.sweep() >= 1

        async with system_conn() as conn:
            assert await token_repo.get(conn, old.id) is None
            assert await token_repo.get(conn, fresh.id) is not None


class TestMagicLink:
    async def test_unknown_email_issues_nothing(self, initialize_pool, email_outbox):
        assert await auth_service.request_magic_link(f"nobody-{uuid4().hex}@example.com") is False
        email_outbox.send.assert_not_called()

    async def test_request_and_verify(self, make_user, email_outbox):
        user = await make_user("Parent")
        assert await auth_service.request_magic_link(user.email) is True

        html = email_outbox.send.call_args.args[2]
        secret = html.split("token=", 1)[1].split('"', 1)[0]

        signed_in = await auth_service.verify_magic_link(secret)
        assert signed_in.id == user.id
        with pytest.raises(TokenAlreadyUsed):
            await auth_service.verify_magic_link(secret)

    async def test_parallel_verification_single_session(self, make_user):
        user = await make_user("Adult")
        async with system_conn() as conn:
            issued = await token_service.issue(conn, "magic_link", user.id)

        results = await asyncio.gather(
            auth_service.verify_magic_link(issued.raw_secret),
            auth_service.verify_magic_link(issued.raw_secret),
            return_exceptions=True,
        )
        assert sum(1 for r in results if not isinstance(r, Exception)) == 1
        assert sum(1 for r in results if isinstance(r, TokenError)) == 1
