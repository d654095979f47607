from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from drcadmin.core.errors import ErrorKind
from drcadmin.domain.models import Admin, AdminActivity, EmailVerification
from drcadmin.persistence.db import SessionLocal
from drcadmin.services.auth import accounts as accounts_module
from drcadmin.services.auth.accounts import validate_signup_fields
from drcadmin.services.auth.sessions import SessionContext
from drcadmin.tests.utils.auth import (
    DEFAULT_PASSWORD,
    Clock,
    RecordingEmailDispatcher,
    build_account_service,
    build_session_manager,
    create_test_admin,
)


@pytest.mark.parametrize(
    ("name", "phone", "email", "message"),
    [
        ("", "08012345678", "ada@drc.ng", "Name is required"),
        ("A" * 51, "08012345678", "ada@drc.ng", "Name must not exceed 50 characters"),
        ("Ada 2", "08012345678", "ada@drc.ng", "Name can only contain letters, spaces and hyphens"),
        ("Ada Obi-Eze", "0801234567", "ada@drc.ng", "Phone number must be 11 digits"),
        ("Ada Obi-Eze", "08012345678", "ada-at-drc", "Invalid email address"),
        ("Ada Obi-Eze", "08012345678", "ada@drc.ng", None),
    ],
)
def test_signup_field_validation(name: str, phone: str, email: str, message: str | None) -> None:
    assert validate_signup_fields(name=name, phone=phone, email=email) == message


async def _register(service, **overrides):
    fields = {
        "name": "Ada Obi-Eze",
        "phone": "08012345678",
        "email": "Ada@DRC.ng",
        "password": DEFAULT_PASSWORD,
    }
    fields.update(overrides)
    async with SessionLocal() as session:
        return await service.register_admin(session=session, **fields)


@pytest.mark.asyncio
async def test_register_creates_unverified_admin_and_sends_verification() -> None:
    dispatcher = RecordingEmailDispatcher()
    service = build_account_service(dispatcher=dispatcher)
    result = await _register(service)
    assert result.ok and result.message == "Account created successfully"
    view = result.value
    assert view.email == "ada@drc.ng"
    assert view.role == "ADMIN"
    assert view.is_email_verified is False
    assert "password_hash" not in view.to_dict()
    assert dispatcher.messages[-1].subject == "Verify Your Email Address"

    async with SessionLocal() as session:
        admin = (await session.execute(select(Admin))).scalar_one()
        activities = (await session.execute(select(AdminActivity.activity))).scalars().all()
    assert admin.password_hash != DEFAULT_PASSWORD
    assert activities == ["SIGNED_UP"]


@pytest.mark.asyncio
async def test_register_rejects_weak_password_and_duplicates() -> None:
    service = build_account_service()
    weak = await _register(service, password="password")
    assert weak.kind == ErrorKind.VALIDATION

    assert (await _register(service)).ok
    same_email = await _register(service, phone="08087654321")
    same_phone = await _register(service, email="other@drc.ng")
    assert same_email.kind == ErrorKind.CONFLICT
    assert same_email.message == "An account with this email already exists"
    assert same_phone.kind == ErrorKind.CONFLICT
    assert same_phone.message == "An account with this phone number already exists"


@pytest.mark.asyncio
async def test_verify_email_flow() -> None:
    clock = Clock()
    dispatcher = RecordingEmailDispatcher()
    service = build_account_service(clock=clock, dispatcher=dispatcher)
    await _register(service)
    token = dispatcher.last_token()

    async with SessionLocal() as session:
        invalid = await service.verify_email(session=session, token="0" * 64)
        verified = await service.verify_email(session=session, token=token)
        again = await service.verify_email(session=session, token=token)
    assert invalid.message == "Invalid verification token"
    assert verified.ok and verified.message == "Email verified successfully"
    assert verified.value.is_email_verified is True
    assert again.message == "Email already verified"


@pytest.mark.asyncio
async def test_verification_token_expires_and_resend_replaces_it() -> None:
    clock = Clock()
    dispatcher = RecordingEmailDispatcher()
    service = build_account_service(clock=clock, dispatcher=dispatcher)
    await _register(service)
    stale = dispatcher.last_token()
    clock.advance(hours=24)

    async with SessionLocal() as session:
        expired = await service.verify_email(session=session, token=stale)
        resent = await service.resend_verification(session=session, email="ada@drc.ng")
        unknown = await service.resend_verification(session=session, email="nobody@drc.ng")
    assert expired.message == "Verification token has expired"
    assert resent.ok and unknown.ok
    assert resent.message == unknown.message

    fresh = dispatcher.last_token()
    assert fresh != stale
    async with SessionLocal() as session:
        rows = (await session.execute(select(EmailVerification))).scalars().all()
        assert len(rows) == 1
        assert rows[0].expires_at == clock() + timedelta(hours=24)
        verified = await service.verify_email(session=session, token=fresh)
    assert verified.ok


@pytest.mark.asyncio
async def test_sign_in_issues_session() -> None:
    clock = Clock()
    admin = await create_test_admin()
    service = build_account_service(clock=clock)
    async with SessionLocal() as session:
        result = await service.sign_in(
            session=session,
            email=admin.email,
            password=DEFAULT_PASSWORD,
            context=SessionContext(user_agent="pytest"),
        )
    assert result.ok and result.message == "Signed in successfully"
    signed_in = result.value
    assert signed_in.expires_at == clock() + timedelta(hours=24)
    assert signed_in.admin.last_login == clock()

    async with SessionLocal() as session:
        validation = await build_session_manager(clock).validate_session(session=session, raw_token=signed_in.token)
    assert validation.is_valid
    assert validation.session_id == signed_in.session_id


@pytest.mark.asyncio
async def test_sign_in_rejections_share_one_message() -> None:
    admin = await create_test_admin()
    inactive = await create_test_admin(active=False)
    service = build_account_service()
    async with SessionLocal() as session:
        wrong_password = await service.sign_in(
            session=session,
            email=admin.email,
            password="Wr0ng!Password",
            context=SessionContext(),
        )
        unknown = await service.sign_in(
            session=session,
            email="nobody@drc.test",
            password=DEFAULT_PASSWORD,
            context=SessionContext(),
        )
        disabled = await service.sign_in(
            session=session,
            email=inactive.email,
            password=DEFAULT_PASSWORD,
            context=SessionContext(),
        )
    for result in (wrong_password, unknown, disabled):
        assert result.kind == ErrorKind.UNAUTHORIZED
        assert result.message == "Invalid credentials"


@pytest.mark.asyncio
async def test_unverified_admin_must_verify_first() -> None:
    admin = await create_test_admin(verified=False)
    service = build_account_service()
    async with SessionLocal() as session:
        result = await service.sign_in(
            session=session,
            email=admin.email,
            password=DEFAULT_PASSWORD,
            context=SessionContext(),
        )
    assert result.kind == ErrorKind.FORBIDDEN
    assert result.message == "Please verify your email before signing in"


@pytest.mark.asyncio
async def test_sign_out_revokes_session() -> None:
    admin = await create_test_admin()
    service = build_account_service()
    async with SessionLocal() as session:
        signed_in = (
            await service.sign_in(session=session, email=admin.email, password=DEFAULT_PASSWORD, context=SessionContext())
        ).value
        result = await service.sign_out(session=session, raw_token=signed_in.token)
        anonymous = await service.sign_out(session=session, raw_token=None)
    assert result.ok and result.message == "Signed out successfully"
    assert anonymous.ok
    async with SessionLocal() as session:
        validation = await build_session_manager().validate_session(session=session, raw_token=signed_in.token)
    assert not validation.is_valid


@pytest.mark.asyncio
async def test_unknown_and_disabled_accounts_still_pay_for_a_password_check(monkeypatch) -> None:
    inactive = await create_test_admin(active=False)
    checked: list[str] = []
    real_verify = accounts_module.verify_password

    async def _counting_verify(plaintext: str, hashed: str) -> bool:
        checked.append(hashed)
        return await real_verify(plaintext, hashed)

    monkeypatch.setattr(accounts_module, "verify_password", _counting_verify)
    service = build_account_service()
    async with SessionLocal() as session:
        for email in ("ghost@drc.test", inactive.email):
            result = await service.sign_in(
                session=session,
                email=email,
                password=DEFAULT_PASSWORD,
                context=SessionContext(),
            )
            assert result.message == "Invalid credentials"
    # Both rejections ran bcrypt against the same throwaway digest, never the real one.
    assert len(checked) == 2
    assert checked[0] == checked[1]
    assert checked[0].startswith("$2")
    assert checked[0] != inactive.password_hash
