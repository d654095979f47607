from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Callable

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from drcadmin.core.config import Settings, get_settings
from drcadmin.core.errors import ErrorKind
from drcadmin.core.result import ServiceResult, service_boundary
from drcadmin.domain.models import Admin, PasswordReset
from drcadmin.persistence.db import transaction
from drcadmin.services.audit import (
    ACTIVITY_PASSWORD_CHANGED_SUCCESS,
    ACTIVITY_PASSWORD_RESET_SUCCESS,
    ACTIVITY_REQUESTED_PASSWORD_RESET,
    record_activity,
)
from drcadmin.services.auth.passwords import hash_password, validate_password_strength, verify_password
from drcadmin.services.auth.sessions import SessionManager
from drcadmin.services.auth.tokens import generate_reset_token, hash_token
from drcadmin.services.email import (
    EmailDispatcher,
    EmailMessage,
    build_email_dispatcher,
    build_reset_link,
    render_password_changed_email,
    render_password_reset_email,
)


logger = logging.getLogger(__name__)

MSG_RESET_REQUESTED = "If an account exists with this email, a reset link has been sent"
MSG_RESET_REQUEST_FAILED = "Failed to process password reset request"
MSG_RESET_SUCCESS = "Password reset successfully"
MSG_RESET_FAILED = "Failed to reset password"
MSG_CHANGED = "Password changed successfully"
MSG_CHANGE_FAILED = "Failed to change password"
MSG_USER_NOT_FOUND = "User not found"
MSG_WRONG_CURRENT = "Current password is incorrect"
MSG_TOKEN_INVALID = "Invalid reset token"
MSG_TOKEN_USED = "Reset token has already been used"
MSG_TOKEN_EXPIRED = "Reset token has expired"
MSG_ACCOUNT_INACTIVE = "Account is not active"
MSG_TOKEN_VALID = "Reset token is valid"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _TokenConsumed(Exception):
    """A concurrent reset consumed the token first."""


@dataclass(frozen=True)
class _TokenCheck:
    valid: bool
    message: str
    reset: PasswordReset | None = None
    admin: Admin | None = None


class PasswordService:
    """Reset-by-email-token and authenticated change-password flows.

    Both flows check strength before touching the store and apply the password update,
    token consumption and session revocation in one transaction.
    """

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
        self._reset_ttl = timedelta(minutes=resolved.password_reset_ttl_minutes)
        self._rollback_on_email_failure = resolved.password_reset_rollback_on_email_failure
        self._revoke_current_on_change = resolved.change_password_revoke_current_session
        self._bcrypt_rounds = resolved.bcrypt_rounds
        self._store_timeout_s = resolved.store_operation_timeout_s
        self._time_provider = time_provider or _utc_now

    def now(self) -> datetime:
        return self._time_provider()

    async def _dispatch(self, message: EmailMessage) -> bool:
        # Dispatchers report failure by return value; a raising one is treated the same way.
        try:
            return await self._email.send(message)
        except Exception as exc:  # noqa: BLE001 - email is an external collaborator
            logger.warning("email_dispatcher_raised subject=%s", message.subject, exc_info=exc)
            return False

    @service_boundary("password.request_reset", failure_message=MSG_RESET_REQUEST_FAILED)
    async def request_password_reset(self, *, session: AsyncSession, email: str) -> ServiceResult[None]:
        normalized = email.strip().lower()
        admin = (
            await session.execute(
                select(Admin).where(Admin.email == normalized, Admin.is_active.is_(True))
            )
        ).scalar_one_or_none()
        if admin is None:
            # Identical answer for unknown accounts keeps email existence private.
            return ServiceResult.success(message=MSG_RESET_REQUESTED)

        raw_token, token_hash = generate_reset_token()
        now = self.now()
        reset = PasswordReset(
            admin_id=admin.id,
            token_hash=token_hash,
            is_used=False,
            created_at=now,
            expires_at=now + self._reset_ttl,
        )
        async with transaction(session):
            session.add(reset)

        message = render_password_reset_email(
            to=admin.email,
            name=admin.name,
            reset_link=build_reset_link(base_url=self._base_url, token=raw_token, admin_id=admin.id),
            ttl_minutes=int(self._reset_ttl.total_seconds() // 60),
        )
        if not await self._dispatch(message):
            if self._rollback_on_email_failure:
                async with transaction(session):
                    await session.execute(delete(PasswordReset).where(PasswordReset.id == reset.id))
            logger.warning(
                "password_reset_email_failed admin_id=%s token_rolled_back=%s",
                admin.id,
                self._rollback_on_email_failure,
            )
            return ServiceResult.failure(ErrorKind.SERVICE_UNAVAILABLE, MSG_RESET_REQUEST_FAILED)

        await record_activity(
            session=session,
            admin_id=admin.id,
            activity=ACTIVITY_REQUESTED_PASSWORD_RESET,
            occurred_at=self.now(),
        )
        logger.info("password_reset_requested admin_id=%s", admin.id)
        return ServiceResult.success(message=MSG_RESET_REQUESTED)

    async def _check_token(self, *, session: AsyncSession, raw_token: str) -> _TokenCheck:
        if not raw_token:
            return _TokenCheck(valid=False, message=MSG_TOKEN_INVALID)
        row = (
            await session.execute(
                select(PasswordReset, Admin)
                .join(Admin, Admin.id == PasswordReset.admin_id)
                .where(PasswordReset.token_hash == hash_token(raw_token))
            )
        ).first()
        if row is None:
            return _TokenCheck(valid=False, message=MSG_TOKEN_INVALID)
        reset, admin = row
        if reset.is_used:
            return _TokenCheck(valid=False, message=MSG_TOKEN_USED)
        # Exclusive boundary: a token is already expired at expires_at.
        if self.now() >= reset.expires_at:
            return _TokenCheck(valid=False, message=MSG_TOKEN_EXPIRED)
        if not admin.is_active:
            return _TokenCheck(valid=False, message=MSG_ACCOUNT_INACTIVE)
        return _TokenCheck(valid=True, message=MSG_TOKEN_VALID, reset=reset, admin=admin)

    @service_boundary("password.verify_reset_token", failure_message=MSG_TOKEN_INVALID)
    async def verify_reset_token(self, *, session: AsyncSession, token: str) -> ServiceResult[str]:
        """Report whether ``token`` can still reset a password; the value is the owning admin id."""
        check = await self._check_token(session=session, raw_token=token)
        if not check.valid or check.admin is None:
            return ServiceResult.failure(ErrorKind.VALIDATION, check.message)
        return ServiceResult.success(check.admin.id, message=check.message)

    @service_boundary("password.reset_with_token", failure_message=MSG_RESET_FAILED)
    async def reset_password_with_token(
        self,
        *,
        session: AsyncSession,
        token: str,
        new_password: str,
    ) -> ServiceResult[None]:
        strength_error = validate_password_strength(new_password)
        if strength_error:
            return ServiceResult.failure(ErrorKind.VALIDATION, strength_error)

        check = await self._check_token(session=session, raw_token=token)
        if not check.valid or check.reset is None or check.admin is None:
            return ServiceResult.failure(ErrorKind.VALIDATION, check.message)
        admin = check.admin
        password_hash = await hash_password(new_password, rounds=self._bcrypt_rounds)

        try:
            async with transaction(session):
                # The conditional flip of is_used is the commit marker against replays.
                consumed = await session.execute(
                    update(PasswordReset)
                    .where(PasswordReset.id == check.reset.id, PasswordReset.is_used.is_(False))
                    .values(is_used=True)
                )
                if (consumed.rowcount or 0) != 1:
                    raise _TokenConsumed()
                await session.execute(
                    update(Admin)
                    .where(Admin.id == admin.id)
                    .values(password_hash=password_hash, updated_at=self.now())
                )
                revoked = await self._sessions.revoke_all_sessions(session=session, admin_id=admin.id)
        except _TokenConsumed:
            return ServiceResult.failure(ErrorKind.VALIDATION, MSG_TOKEN_USED)

        logger.info("password_reset_completed admin_id=%s sessions_revoked=%s", admin.id, revoked)
        await self._dispatch(render_password_changed_email(to=admin.email, name=admin.name))
        await record_activity(
            session=session,
            admin_id=admin.id,
            activity=ACTIVITY_PASSWORD_RESET_SUCCESS,
            occurred_at=self.now(),
        )
        return ServiceResult.success(message=MSG_RESET_SUCCESS)

    @service_boundary("password.change", failure_message=MSG_CHANGE_FAILED)
    async def change_password(
        self,
        *,
        session: AsyncSession,
        admin_id: str,
        current_password: str,
        new_password: str,
        current_session_id: str | None = None,
    ) -> ServiceResult[None]:
        strength_error = validate_password_strength(new_password)
        if strength_error:
            return ServiceResult.failure(ErrorKind.VALIDATION, strength_error)

        admin = await session.get(Admin, admin_id)
        if admin is None:
            return ServiceResult.failure(ErrorKind.NOT_FOUND, MSG_USER_NOT_FOUND)
        if not await verify_password(current_password, admin.password_hash):
            return ServiceResult.failure(ErrorKind.VALIDATION, MSG_WRONG_CURRENT)

        password_hash = await hash_password(new_password, rounds=self._bcrypt_rounds)
        keep_session_id = None if self._revoke_current_on_change else current_session_id
        async with transaction(session):
            admin.password_hash = password_hash
            admin.updated_at = self.now()
            await session.flush()
            revoked = await self._sessions.revoke_all_sessions(
                session=session,
                admin_id=admin.id,
                except_session_id=keep_session_id,
            )

        logger.info("password_changed admin_id=%s sessions_revoked=%s", admin.id, revoked)
        await self._dispatch(render_password_changed_email(to=admin.email, name=admin.name))
        await record_activity(
            session=session,
            admin_id=admin.id,
            activity=ACTIVITY_PASSWORD_CHANGED_SUCCESS,
            occurred_at=self.now(),
        )
        return ServiceResult.success(message=MSG_CHANGED)

    async def cleanup_expired_tokens(self, *, session: AsyncSession) -> int:
        result = await session.execute(delete(PasswordReset).where(PasswordReset.expires_at < self.now()))
        return result.rowcount or 0


def get_password_service() -> PasswordService:
    return PasswordService(
        session_manager=SessionManager(),
        email_dispatcher=build_email_dispatcher(),
    )
