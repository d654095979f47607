from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Callable

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from drcadmin.core.config import get_settings
from drcadmin.core.errors import ErrorKind
from drcadmin.core.result import ServiceResult, service_boundary
from drcadmin.domain.models import Admin, AdminSession
from drcadmin.domain.views import AdminView, SessionView
from drcadmin.services.audit import ACTIVITY_SESSION_REVOKED, ACTIVITY_SESSIONS_REVOKED, record_activity
from drcadmin.services.auth.tokens import generate_session_credentials, hash_token, tokens_match


logger = logging.getLogger(__name__)

DEVICE_MOBILE = "mobile"
DEVICE_TABLET = "tablet"
DEVICE_DESKTOP = "desktop"

ERROR_NO_TOKEN = "No token provided"
ERROR_NOT_FOUND = "Session not found"
ERROR_REVOKED = "Session has been revoked"
ERROR_EXPIRED = "Session has expired"
ERROR_ADMIN_INACTIVE = "Admin account inactive"
ERROR_INTERNAL = "Internal server error"


def _utc_now() -> datetime:
    # Keep session timestamps in UTC for consistent expiry checks.
    return datetime.now(timezone.utc)


def detect_device_type(user_agent: str | None) -> str | None:
    if not user_agent:
        return None
    lowered = user_agent.lower()
    if "ipad" in lowered or "tablet" in lowered:
        return DEVICE_TABLET
    if "mobi" in lowered or "iphone" in lowered or "android" in lowered:
        return DEVICE_MOBILE
    return DEVICE_DESKTOP


@dataclass(frozen=True)
class SessionContext:
    user_agent: str | None = None
    ip_address: str | None = None
    location: str | None = None
    device_type: str | None = None


@dataclass(frozen=True)
class IssuedSession:
    # The raw token is only available here, at issue time.
    token: str
    session_id: str
    admin_id: str
    expires_at: datetime


@dataclass(frozen=True)
class SessionValidation:
    is_valid: bool
    admin: AdminView | None = None
    session_id: str | None = None
    error: str | None = None
    # Set when the store could not be consulted; callers answer 503, not 401.
    unavailable: bool = False


class SessionManager:
    """Issue, validate and revoke admin console sessions.

    Every check re-reads the store, so a revoked or expired session is rejected on the
    very next request.
    """

    def __init__(
        self,
        *,
        ttl_hours: int | None = None,
        idle_cleanup_days: int | None = None,
        store_timeout_s: float | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        settings = get_settings()
        self._ttl = timedelta(hours=ttl_hours if ttl_hours is not None else settings.session_ttl_hours)
        self._idle_cleanup = timedelta(
            days=idle_cleanup_days if idle_cleanup_days is not None else settings.session_idle_cleanup_days
        )
        self._store_timeout_s = store_timeout_s if store_timeout_s is not None else settings.store_operation_timeout_s
        self._time_provider = time_provider or _utc_now

    def now(self) -> datetime:
        return self._time_provider()

    async def create_session(
        self,
        *,
        session: AsyncSession,
        admin_id: str,
        context: SessionContext,
        commit: bool = True,
    ) -> IssuedSession:
        session_id, raw_token, token_prefix, token_hash = generate_session_credentials()
        now = self.now()
        row = AdminSession(
            admin_id=admin_id,
            session_id=session_id,
            token_prefix=token_prefix,
            token_hash=token_hash,
            is_active=True,
            created_at=now,
            expires_at=now + self._ttl,
            last_used=now,
            user_agent=context.user_agent,
            ip_address=context.ip_address,
            location=context.location,
            device_type=context.device_type or detect_device_type(context.user_agent),
        )
        session.add(row)
        if commit:
            await session.commit()
        else:
            await session.flush()
        logger.info("session_created admin_id=%s session_id=%s", admin_id, session_id)
        return IssuedSession(token=raw_token, session_id=session_id, admin_id=admin_id, expires_at=row.expires_at)

    async def validate_session(self, *, session: AsyncSession, raw_token: str | None) -> SessionValidation:
        if not raw_token:
            return SessionValidation(is_valid=False, error=ERROR_NO_TOKEN)
        try:
            if self._store_timeout_s:
                return await asyncio.wait_for(
                    self._validate(session=session, raw_token=raw_token),
                    timeout=self._store_timeout_s,
                )
            return await self._validate(session=session, raw_token=raw_token)
        except asyncio.TimeoutError:
            await session.rollback()
            logger.warning("session_validation_timeout timeout_s=%s", self._store_timeout_s)
            return SessionValidation(is_valid=False, error=ERROR_INTERNAL, unavailable=True)
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.error("session_validation_store_error", exc_info=exc)
            return SessionValidation(is_valid=False, error=ERROR_INTERNAL, unavailable=True)

    async def _validate(self, *, session: AsyncSession, raw_token: str) -> SessionValidation:
        token_hash = hash_token(raw_token)
        row = (
            await session.execute(
                select(AdminSession, Admin)
                .join(Admin, Admin.id == AdminSession.admin_id)
                .where(AdminSession.token_hash == token_hash)
            )
        ).first()
        if row is None:
            return SessionValidation(is_valid=False, error=ERROR_NOT_FOUND)
        admin_session, admin = row
        if not tokens_match(token_hash, admin_session.token_hash):
            return SessionValidation(is_valid=False, error=ERROR_NOT_FOUND)
        if not admin_session.is_active:
            return SessionValidation(is_valid=False, error=ERROR_REVOKED, session_id=admin_session.session_id)
        now = self.now()
        # Expiry is computed, not only stored: an unswept session is still dead at expires_at.
        if now >= admin_session.expires_at:
            return SessionValidation(is_valid=False, error=ERROR_EXPIRED, session_id=admin_session.session_id)
        if not admin.is_active:
            return SessionValidation(is_valid=False, error=ERROR_ADMIN_INACTIVE, session_id=admin_session.session_id)

        await session.execute(
            update(AdminSession)
            .where(AdminSession.id == admin_session.id, AdminSession.is_active.is_(True))
            .values(last_used=now)
        )
        await session.commit()
        return SessionValidation(
            is_valid=True,
            admin=AdminView.from_model(admin),
            session_id=admin_session.session_id,
        )

    @service_boundary("sessions.list_active", failure_message="Failed to load sessions")
    async def list_active_sessions(
        self,
        *,
        session: AsyncSession,
        admin_id: str,
        current_session_id: str | None,
    ) -> ServiceResult[list[SessionView]]:
        now = self.now()
        result = await session.execute(
            select(AdminSession)
            .where(
                AdminSession.admin_id == admin_id,
                AdminSession.is_active.is_(True),
                AdminSession.expires_at > now,
            )
            .order_by(AdminSession.last_used.desc())
        )
        views = [
            SessionView.from_model(row, current_session_id=current_session_id)
            for row in result.scalars().all()
        ]
        return ServiceResult.success(views)

    @service_boundary("sessions.revoke", failure_message="Failed to revoke session")
    async def revoke_session(
        self,
        *,
        session: AsyncSession,
        session_id: str,
        requesting_admin_id: str,
    ) -> ServiceResult[bool]:
        # Ownership is part of the predicate: another admin's session reads as missing.
        result = await session.execute(
            update(AdminSession)
            .where(
                AdminSession.session_id == session_id,
                AdminSession.admin_id == requesting_admin_id,
                AdminSession.is_active.is_(True),
            )
            .values(is_active=False)
        )
        if (result.rowcount or 0) == 0:
            await session.rollback()
            return ServiceResult.failure(ErrorKind.NOT_FOUND, ERROR_NOT_FOUND)
        await session.commit()
        logger.info("session_revoked admin_id=%s session_id=%s", requesting_admin_id, session_id)
        await record_activity(
            session=session,
            admin_id=requesting_admin_id,
            activity=ACTIVITY_SESSION_REVOKED,
            occurred_at=self.now(),
        )
        return ServiceResult.success(True, message="Session revoked successfully")

    @service_boundary("sessions.revoke_others", failure_message="Failed to revoke sessions")
    async def revoke_all_other_sessions(
        self,
        *,
        session: AsyncSession,
        admin_id: str,
        current_session_id: str,
    ) -> ServiceResult[int]:
        count = await self.revoke_all_sessions(
            session=session,
            admin_id=admin_id,
            except_session_id=current_session_id,
        )
        await session.commit()
        logger.info("sessions_revoked admin_id=%s count=%s", admin_id, count)
        await record_activity(
            session=session,
            admin_id=admin_id,
            activity=ACTIVITY_SESSIONS_REVOKED,
            occurred_at=self.now(),
        )
        return ServiceResult.success(count, message=f"Revoked {count} session(s)")

    async def revoke_all_sessions(
        self,
        *,
        session: AsyncSession,
        admin_id: str,
        except_session_id: str | None = None,
    ) -> int:
        """Deactivate an admin's sessions inside the caller's transaction; does not commit."""
        conditions = [AdminSession.admin_id == admin_id, AdminSession.is_active.is_(True)]
        if except_session_id is not None:
            conditions.append(AdminSession.session_id != except_session_id)
        result = await session.execute(update(AdminSession).where(*conditions).values(is_active=False))
        return result.rowcount or 0

    async def revoke_by_token(self, *, session: AsyncSession, raw_token: str) -> str | None:
        """Deactivate the session carrying ``raw_token``; returns its admin id when one was active."""
        row = (
            await session.execute(
                select(AdminSession).where(AdminSession.token_hash == hash_token(raw_token))
            )
        ).scalar_one_or_none()
        if row is None or not row.is_active:
            return None
        await session.execute(update(AdminSession).where(AdminSession.id == row.id).values(is_active=False))
        await session.commit()
        return row.admin_id

    async def cleanup_expired_sessions(self, *, session: AsyncSession) -> int:
        # Sweep expired or long-idle sessions; validation never depends on this running.
        now = self.now()
        result = await session.execute(
            update(AdminSession)
            .where(
                and_(
                    AdminSession.is_active.is_(True),
                    or_(
                        AdminSession.expires_at <= now,
                        AdminSession.last_used < now - self._idle_cleanup,
                    ),
                )
            )
            .values(is_active=False)
        )
        return result.rowcount or 0


def get_session_manager() -> SessionManager:
    return SessionManager()
