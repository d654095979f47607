from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from drcadmin.core.config import Settings
from drcadmin.core.errors import ErrorKind
from drcadmin.domain.models import Admin, AdminActivity, PasswordReset
from drcadmin.persistence.db import SessionLocal
from drcadmin.services.auth.password_reset import (
    MSG_RESET_REQUESTED,
    MSG_TOKEN_EXPIRED,
    MSG_TOKEN_INVALID,
    MSG_TOKEN_USED,
)
from drcadmin.services.auth.passwords import verify_password
from drcadmin.services.auth.sessions import ERROR_REVOKED, SessionContext
from drcadmin.tests.utils.auth import (
    DEFAULT_PASSWORD,
    Clock,
    RecordingEmailDispatcher,
    build_password_service,
    build_session_manager,
    create_test_admin,
)


NEW_PASSWORD = "N3w!Password"


async def _reset_count() -> int:
    async with SessionLocal() as session:
        return (await session.execute(select(func.count(PasswordReset.id)))).scalar_one()


async def _password_hash(admin_id: str) -> str:
    async with SessionLocal() as session:
        return (await session.execute(select(Admin.password_hash).where(Admin.id == admin_id))).scalar_one()


@pytest.mark.asyncio
async def test_unknown_email_gets_same_answer_and_no_token() -> None:
    dispatcher = RecordingEmailDispatcher()
    service = build_password_service(dispatcher=dispatcher)
    async with SessionLocal() as session:
        result = await service.request_password_reset(session=session, email="nobody@drc.test")
    assert result.ok
    assert result.message == MSG_RESET_REQUESTED
    assert dispatcher.messages == []
    assert await _reset_count() == 0


@pytest.mark.asyncio
async def test_inactive_account_is_treated_as_unknown() -> None:
    admin = await create_test_admin(active=False)
    dispatcher = RecordingEmailDispatcher()
    service = build_password_service(dispatcher=dispatcher)
    async with SessionLocal() as session:
        result = await service.request_password_reset(session=session, email=admin.email)
    assert result.ok and result.message == MSG_RESET_REQUESTED
    assert dispatcher.messages == []


@pytest.mark.asyncio
async def test_request_issues_one_hour_token_and_emails_link() -> None:
    clock = Clock()
    admin = await create_test_admin()
    dispatcher = RecordingEmailDispatcher()
    service = build_password_service(clock=clock, dispatcher=dispatcher)
    async with SessionLocal() as session:
        result = await service.request_password_reset(session=session, email=admin.email.upper())
    assert result.ok and result.message == MSG_RESET_REQUESTED
    assert len(dispatcher.messages) == 1
    assert dispatcher.messages[0].to == admin.email
    assert f"userId={admin.id}" in (dispatcher.messages[0].text or "")

    raw_token = dispatcher.last_token()
    async with SessionLocal() as session:
        row = (await session.execute(select(PasswordReset))).scalar_one()
        activities = (
            await session.execute(select(AdminActivity.activity).where(AdminActivity.admin_id == admin.id))
        ).scalars().all()
    assert row.expires_at == clock() + timedelta(hours=1)
    assert row.is_used is False
    # Only the digest is persisted.
    assert row.token_hash != raw_token
    assert "REQUESTED_PASSWORD_RESET" in activities


@pytest.mark.asyncio
async def test_email_failure_rolls_back_token() -> None:
    admin = await create_test_admin()
    dispatcher = RecordingEmailDispatcher(deliver=False)
    service = build_password_service(dispatcher=dispatcher)
    async with SessionLocal() as session:
        result = await service.request_password_reset(session=session, email=admin.email)
    assert not result.ok
    assert result.kind == ErrorKind.SERVICE_UNAVAILABLE
    assert result.message == "Failed to process password reset request"
    assert await _reset_count() == 0


@pytest.mark.asyncio
async def test_email_failure_keeps_token_when_rollback_disabled() -> None:
    admin = await create_test_admin()
    service = build_password_service(
        dispatcher=RecordingEmailDispatcher(deliver=False),
        settings=Settings(password_reset_rollback_on_email_failure=False),
    )
    async with SessionLocal() as session:
        result = await service.request_password_reset(session=session, email=admin.email)
    assert result.kind == ErrorKind.SERVICE_UNAVAILABLE
    assert await _reset_count() == 1


@pytest.mark.asyncio
async def test_verify_reset_token_reports_validity() -> None:
    admin = await create_test_admin()
    dispatcher = RecordingEmailDispatcher()
    service = build_password_service(dispatcher=dispatcher)
    async with SessionLocal() as session:
        await service.request_password_reset(session=session, email=admin.email)
        valid = await service.verify_reset_token(session=session, token=dispatcher.last_token())
        invalid = await service.verify_reset_token(session=session, token="f" * 64)
    assert valid.ok and valid.value == admin.id
    assert not invalid.ok
    assert invalid.kind == ErrorKind.VALIDATION
    assert invalid.message == MSG_TOKEN_INVALID


@pytest.mark.asyncio
async def test_reset_updates_password_and_revokes_every_session() -> None:
    admin = await create_test_admin()
    dispatcher = RecordingEmailDispatcher()
    service = build_password_service(dispatcher=dispatcher)
    sessions = build_session_manager()
    async with SessionLocal() as session:
        first = await sessions.create_session(session=session, admin_id=admin.id, context=SessionContext())
        second = await sessions.create_session(session=session, admin_id=admin.id, context=SessionContext())
        await service.request_password_reset(session=session, email=admin.email)
        result = await service.reset_password_with_token(
            session=session,
            token=dispatcher.last_token(),
            new_password=NEW_PASSWORD,
        )
    assert result.ok and result.message == "Password reset successfully"

    hashed = await _password_hash(admin.id)
    assert await verify_password(NEW_PASSWORD, hashed)
    assert not await verify_password(DEFAULT_PASSWORD, hashed)
    assert dispatcher.messages[-1].subject == "Password Changed Successfully"

    async with SessionLocal() as session:
        for issued in (first, second):
            validation = await sessions.validate_session(session=session, raw_token=issued.token)
            assert not validation.is_valid
            assert validation.error == ERROR_REVOKED


@pytest.mark.asyncio
async def test_reset_token_is_single_use() -> None:
    admin = await create_test_admin()
    dispatcher = RecordingEmailDispatcher()
    service = build_password_service(dispatcher=dispatcher)
    async with SessionLocal() as session:
        await service.request_password_reset(session=session, email=admin.email)
        token = dispatcher.last_token()
        first = await service.reset_password_with_token(session=session, token=token, new_password=NEW_PASSWORD)
        second = await service.reset_password_with_token(session=session, token=token, new_password="An0ther!Pass")
    assert first.ok
    assert not second.ok
    assert second.message == MSG_TOKEN_USED
    assert await verify_password(NEW_PASSWORD, await _password_hash(admin.id))


@pytest.mark.asyncio
async def test_weak_password_leaves_token_and_password_untouched() -> None:
    admin = await create_test_admin()
    dispatcher = RecordingEmailDispatcher()
    service = build_password_service(dispatcher=dispatcher)
    before = await _password_hash(admin.id)
    async with SessionLocal() as session:
        await service.request_password_reset(session=session, email=admin.email)
        token = dispatcher.last_token()
        result = await service.reset_password_with_token(session=session, token=token, new_password="weak")
        still_valid = await service.verify_reset_token(session=session, token=token)
    assert not result.ok
    assert result.kind == ErrorKind.VALIDATION
    assert result.message == "Password must be at least 8 characters long"
    assert still_valid.ok
    assert await _password_hash(admin.id) == before


@pytest.mark.asyncio
async def test_token_expires_exactly_at_expiry() -> None:
    clock = Clock()
    admin = await create_test_admin()
    dispatcher = RecordingEmailDispatcher()
    service = build_password_service(clock=clock, dispatcher=dispatcher)
    async with SessionLocal() as session:
        await service.request_password_reset(session=session, email=admin.email)
        token = dispatcher.last_token()

        clock.advance(minutes=59, seconds=59)
        assert (await service.verify_reset_token(session=session, token=token)).ok

        clock.advance(seconds=1)
        expired = await service.verify_reset_token(session=session, token=token)
        reset = await service.reset_password_with_token(session=session, token=token, new_password=NEW_PASSWORD)
    assert not expired.ok and expired.message == MSG_TOKEN_EXPIRED
    assert not reset.ok and reset.message == MSG_TOKEN_EXPIRED


@pytest.mark.asyncio
async def test_cleanup_removes_only_expired_tokens() -> None:
    clock = Clock()
    admin = await create_test_admin()
    service = build_password_service(clock=clock)
    async with SessionLocal() as session:
        await service.request_password_reset(session=session, email=admin.email)
        clock.advance(minutes=30)
        await service.request_password_reset(session=session, email=admin.email)
        clock.advance(minutes=31)
        deleted = await service.cleanup_expired_tokens(session=session)
        await session.commit()
    assert deleted == 1
    assert await _reset_count() == 1


@pytest.mark.asyncio
async def test_change_password_rejects_wrong_current_password() -> None:
    admin = await create_test_admin()
    service = build_password_service()
    before = await _password_hash(admin.id)
    async with SessionLocal() as session:
        result = await service.change_password(
            session=session,
            admin_id=admin.id,
            current_password="Wr0ng!Password",
            new_password=NEW_PASSWORD,
        )
    assert not result.ok
    assert result.kind == ErrorKind.VALIDATION
    assert result.message == "Current password is incorrect"
    assert await _password_hash(admin.id) == before


@pytest.mark.asyncio
async def test_change_password_unknown_admin_is_not_found() -> None:
    service = build_password_service()
    async with SessionLocal() as session:
        result = await service.change_password(
            session=session,
            admin_id="missing",
            current_password=DEFAULT_PASSWORD,
            new_password=NEW_PASSWORD,
        )
    assert result.kind == ErrorKind.NOT_FOUND
    assert result.message == "User not found"


@pytest.mark.asyncio
async def test_change_password_checks_strength_first() -> None:
    admin = await create_test_admin()
    service = build_password_service()
    async with SessionLocal() as session:
        result = await service.change_password(
            session=session,
            admin_id=admin.id,
            current_password="Wr0ng!Password",
            new_password="alllowercase1!",
        )
    assert result.message == "Password must contain at least one uppercase letter"


@pytest.mark.asyncio
async def test_change_password_revokes_all_sessions_including_current() -> None:
    admin = await create_test_admin()
    dispatcher = RecordingEmailDispatcher()
    service = build_password_service(dispatcher=dispatcher)
    sessions = build_session_manager()
    async with SessionLocal() as session:
        current = await sessions.create_session(session=session, admin_id=admin.id, context=SessionContext())
        other = await sessions.create_session(session=session, admin_id=admin.id, context=SessionContext())
        result = await service.change_password(
            session=session,
            admin_id=admin.id,
            current_password=DEFAULT_PASSWORD,
            new_password=NEW_PASSWORD,
            current_session_id=current.session_id,
        )
        assert result.ok and result.message == "Password changed successfully"
        for issued in (current, other):
            assert not (await sessions.validate_session(session=session, raw_token=issued.token)).is_valid
    assert dispatcher.messages[-1].subject == "Password Changed Successfully"


@pytest.mark.asyncio
async def test_change_password_can_keep_current_session() -> None:
    admin = await create_test_admin()
    service = build_password_service(settings=Settings(change_password_revoke_current_session=False))
    sessions = build_session_manager()
    async with SessionLocal() as session:
        current = await sessions.create_session(session=session, admin_id=admin.id, context=SessionContext())
        other = await sessions.create_session(session=session, admin_id=admin.id, context=SessionContext())
        result = await service.change_password(
            session=session,
            admin_id=admin.id,
            current_password=DEFAULT_PASSWORD,
            new_password=NEW_PASSWORD,
            current_session_id=current.session_id,
        )
        assert result.ok
        assert (await sessions.validate_session(session=session, raw_token=current.token)).is_valid
        assert not (await sessions.validate_session(session=session, raw_token=other.token)).is_valid
