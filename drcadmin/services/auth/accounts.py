from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import re
from typing import Callable

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from drcadmin.core.config import Settings, get_settings
from drcadmin.core.errors import ErrorKind
from drcadmin.core.result import ServiceResult, service_boundary
from drcadmin.domain.models import ROLE_ADMIN, Admin, EmailVerification
from drcadmin.domain.views import AdminView
from drcadmin.persistence.db import transaction
from drcadmin.services.audit import (
    ACTIVITY_EMAIL_VERIFIED,
    ACTIVITY_SIGNED_IN,
    ACTIVITY_SIGNED_OUT,
    ACTIVITY_SIGNED_UP,
    record_activity,
)
from drcadmin.services.auth.passwords import (
    dummy_password_hash,
    hash_password,
    validate_password_strength,
    verify_password,
)
from drcadmin.services.auth.sessions import IssuedSession, SessionContext, SessionManager
from drcadmin.services.auth.tokens import generate_secure_token, hash_token
from drcadmin.services.email import (
    EmailDispatcher,
    build_email_dispatcher,
    build_verification_link,
    render_verification_email,
)


logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[a-zA-Z\s-]+$")
_PHONE_RE = re.compile(r"^\d{11}$")
_EMAIL_RE = re.compile(r"\S+@\S+\.\S+")
MAX_NAME_LENGTH = 50

MSG_SIGNUP_OK = "Account created successfully"
MSG_SIGNUP_FAILED = "Failed to create account"
MSG_EMAIL_TAKEN = "An account with this email already exists"
MSG_PHONE_TAKEN = "An account with this phone number already exists"
MSG_INVALID_CREDENTIALS = "Invalid credentials"
MSG_VERIFY_FIRST = "Please verify your email before signing in"
MSG_SIGNIN_OK = "Signed in successfully"
MSG_SIGNIN_FAILED = "Failed to sign in"
MSG_SIGNOUT_OK = "Signed out successfully"
MSG_VERIFY_OK = "Email verified successfully"
MSG_VERIFY_INVALID = "Invalid verification token"
MSG_VERIFY_ALREADY = "Email already verified"
MSG_VERIFY_EXPIRED = "Verification token has expired"
MSG_RESEND = "If the account requires verification, a new link has been sent"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def validate_signup_fields(*, name: str, phone: str, email: str) -> str | None:
    # Inputs arrive already trimmed; email is lower-cased by the caller.
    if not name:
        return "Name is required"
    if len(name) > MAX_NAME_LENGTH:
        return f"Name must not exceed {MAX_NAME_LENGTH} characters"
    if not _NAME_RE.match(name):
        return "Name can only contain letters, spaces and hyphens"
    if not _PHONE_RE.match(phone):
        return "Phone number must be 11 digits"
    if not _EMAIL_RE.fullmatch(email):
        return "Invalid email address"
    return None


@dataclass(frozen=True)
class SignInResult:
    # ``token`` is the raw session secret; only its digest is stored.
    token: str
    session_id: str
    expires_at: datetime
    admin: AdminView


class AccountService:
    """Admin sign-up, email verification, sign-in and sign-out."""

    def __init__(
        self,
        *,
        session_manager: SessionManager,
        email_dispatcher: EmailDispatcher,
        settings: Settings | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        resolved = settings or get_settings()
        self._sessions = session_manager
        self._email = email_dispatcher
        self._base_url = resolved.app_base_url
        self._verification_ttl = timedelta(hours=resolved.email_verification_ttl_hours)
        self._bcrypt_rounds = resolved.bcrypt_rounds
        self._store_timeout_s = resolved.store_operation_timeout_s
        self._time_provider = time_provider or _utc_now

    def now(self) -> datetime:
        return self._time_provider()

    async def _send_verification(self, *, session: AsyncSession, admin: Admin) -> bool:
        # Returns delivery status; callers never fail because mail is down.
        raw_token = generate_secure_token()
        async with transaction(session):
            # One outstanding link per admin; older ones stop working.
            await session.execute(
                delete(EmailVerification).where(
                    EmailVerification.admin_id == admin.id,
                    EmailVerification.verified_at.is_(None),
                )
            )
            session.add(
                EmailVerification(
                    admin_id=admin.id,
                    email=admin.email,
                    token_hash=hash_token(raw_token),
                    expires_at=self.now() + self._verification_ttl,
                )
            )
        message = render_verification_email(
            to=admin.email,
            name=admin.name,
            verification_link=build_verification_link(base_url=self._base_url, token=raw_token),
            ttl_hours=int(self._verification_ttl.total_seconds() // 3600),
        )
        try:
            delivered = await self._email.send(message)
        except Exception as exc:  # noqa: BLE001 - email is an external collaborator
            logger.warning("verification_email_dispatcher_raised admin_id=%s", admin.id, exc_info=exc)
            delivered = False
        if not delivered:
            logger.warning("verification_email_failed admin_id=%s", admin.id)
        return delivered

    @service_boundary("accounts.register", failure_message=MSG_SIGNUP_FAILED)
    async def register_admin(
        self,
        *,
        session: AsyncSession,
        name: str,
        phone: str,
        email: str,
        password: str,
    ) -> ServiceResult[AdminView]:
        # New admins start unverified and cannot sign in until the emailed link is used.
        name = name.strip()
        phone = phone.strip()
        email = email.strip().lower()
        error = validate_signup_fields(name=name, phone=phone, email=email)
        if error is None:
            error = validate_password_strength(password)
        if error:
            return ServiceResult.failure(ErrorKind.VALIDATION, error)

        existing = (
            await session.execute(select(Admin.email, Admin.phone).where(or_(Admin.email == email, Admin.phone == phone)))
        ).all()
        if any(row.email == email for row in existing):
            return ServiceResult.failure(ErrorKind.CONFLICT, MSG_EMAIL_TAKEN)
        if existing:
            return ServiceResult.failure(ErrorKind.CONFLICT, MSG_PHONE_TAKEN)

        now = self.now()
        admin = Admin(
            name=name,
            phone=phone,
            email=email,
            password_hash=await hash_password(password, rounds=self._bcrypt_rounds),
            role=ROLE_ADMIN,
            is_active=True,
            is_email_verified=False,
            created_at=now,
            updated_at=now,
        )
        try:
            async with transaction(session):
                session.add(admin)
        except IntegrityError:
            # Lost a race with a concurrent sign-up for the same email or phone.
            return ServiceResult.failure(ErrorKind.CONFLICT, MSG_EMAIL_TAKEN)

        logger.info("admin_registered admin_id=%s", admin.id)
        await record_activity(
            session=session,
            admin_id=admin.id,
            activity=ACTIVITY_SIGNED_UP,
            occurred_at=self.now(),
        )
        await self._send_verification(session=session, admin=admin)
        return ServiceResult.success(AdminView.from_model(admin), message=MSG_SIGNUP_OK)

    @service_boundary("accounts.verify_email", failure_message="Failed to verify email")
    async def verify_email(self, *, session: AsyncSession, token: str) -> ServiceResult[AdminView]:
        # Links are single-use and bound to the address they were sent to.
        if not token:
            return ServiceResult.failure(ErrorKind.VALIDATION, MSG_VERIFY_INVALID)
        row = (
            await session.execute(
                select(EmailVerification, Admin)
                .join(Admin, Admin.id == EmailVerification.admin_id)
                .where(EmailVerification.token_hash == hash_token(token))
            )
        ).first()
        if row is None:
            return ServiceResult.failure(ErrorKind.VALIDATION, MSG_VERIFY_INVALID)
        verification, admin = row
        if verification.verified_at is not None or admin.is_email_verified:
            return ServiceResult.failure(ErrorKind.VALIDATION, MSG_VERIFY_ALREADY)
        now = self.now()
        if now >= verification.expires_at:
            return ServiceResult.failure(ErrorKind.VALIDATION, MSG_VERIFY_EXPIRED)
        async with transaction(session):
            verification.verified_at = now
            admin.is_email_verified = True
            admin.updated_at = now
        logger.info("admin_email_verified admin_id=%s", admin.id)
        await record_activity(
            session=session,
            admin_id=admin.id,
            activity=ACTIVITY_EMAIL_VERIFIED,
            occurred_at=self.now(),
        )
        return ServiceResult.success(AdminView.from_model(admin), message=MSG_VERIFY_OK)

    @service_boundary("accounts.resend_verification", failure_message="Failed to resend verification email")
    async def resend_verification(self, *, session: AsyncSession, email: str) -> ServiceResult[None]:
        # Same answer whether or not the address belongs to a pending account.
        admin = (
            await session.execute(select(Admin).where(Admin.email == email.strip().lower()))
        ).scalar_one_or_none()
        if admin is not None and admin.is_active and not admin.is_email_verified:
            await self._send_verification(session=session, admin=admin)
        return ServiceResult.success(message=MSG_RESEND)

    @service_boundary("accounts.sign_in", failure_message=MSG_SIGNIN_FAILED)
    async def sign_in(
        self,
        *,
        session: AsyncSession,
        email: str,
        password: str,
        context: SessionContext,
    ) -> ServiceResult[SignInResult]:
        admin = (
            await session.execute(select(Admin).where(Admin.email == email.strip().lower()))
        ).scalar_one_or_none()
        # Unknown account, disabled account and wrong password share one answer and one bcrypt cost.
        if admin is None or not admin.is_active:
            await verify_password(password, await dummy_password_hash(rounds=self._bcrypt_rounds))
            return ServiceResult.failure(ErrorKind.UNAUTHORIZED, MSG_INVALID_CREDENTIALS)
        if not await verify_password(password, admin.password_hash):
            logger.info("admin_sign_in_rejected admin_id=%s", admin.id)
            return ServiceResult.failure(ErrorKind.UNAUTHORIZED, MSG_INVALID_CREDENTIALS)
        if not admin.is_email_verified:
            return ServiceResult.failure(ErrorKind.FORBIDDEN, MSG_VERIFY_FIRST)

        admin.last_login = self.now()
        issued: IssuedSession = await self._sessions.create_session(
            session=session,
            admin_id=admin.id,
            context=context,
        )
        await record_activity(
            session=session,
            admin_id=admin.id,
            activity=ACTIVITY_SIGNED_IN,
            occurred_at=self.now(),
        )
        return ServiceResult.success(
            SignInResult(
                token=issued.token,
                session_id=issued.session_id,
                expires_at=issued.expires_at,
                admin=AdminView.from_model(admin),
            ),
            message=MSG_SIGNIN_OK,
        )

    @service_boundary("accounts.sign_out", failure_message="Failed to sign out")
    async def sign_out(self, *, session: AsyncSession, raw_token: str | None) -> ServiceResult[None]:
        # Idempotent: a missing or already revoked token still signs out.
        if raw_token:
            admin_id = await self._sessions.revoke_by_token(session=session, raw_token=raw_token)
            if admin_id is not None:
                await record_activity(
                    session=session,
                    admin_id=admin_id,
                    activity=ACTIVITY_SIGNED_OUT,
                    occurred_at=self.now(),
                )
        return ServiceResult.success(message=MSG_SIGNOUT_OK)


def get_account_service() -> AccountService:
    return AccountService(
        session_manager=SessionManager(),
        email_dispatcher=build_email_dispatcher(),
    )
