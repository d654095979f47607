from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from drcadmin.domain.models import AdminActivity, AuditLog


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["api_key", "authorization", "token", "secret", "password", "key_hash", "cookie"]
_REDACTED_VALUE = "[REDACTED]"

ACTIVITY_SIGNED_UP = "SIGNED_UP"
ACTIVITY_SIGNED_IN = "SIGNED_IN"
ACTIVITY_SIGNED_OUT = "SIGNED_OUT"
ACTIVITY_EMAIL_VERIFIED = "EMAIL_VERIFIED"
ACTIVITY_REQUESTED_PASSWORD_RESET = "REQUESTED_PASSWORD_RESET"
ACTIVITY_PASSWORD_RESET_SUCCESS = "PASSWORD_RESET_SUCCESS"
ACTIVITY_PASSWORD_CHANGED_SUCCESS = "PASSWORD_CHANGED_SUCCESS"
ACTIVITY_SESSION_REVOKED = "SESSION_REVOKED"
ACTIVITY_SESSIONS_REVOKED = "OTHER_SESSIONS_REVOKED"


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub sensitive fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


def get_request_context(request: Request | None) -> dict[str, str | None]:
    # Extract request identifiers and client hints without persisting credentials.
    if request is None:
        return {"request_id": None, "ip_address": None, "user_agent": None}
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip() or None
    else:
        ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    return {"request_id": request_id, "ip_address": ip_address, "user_agent": user_agent}


async def _write(
    *,
    session: AsyncSession,
    row: AdminActivity | AuditLog,
    label: str,
    commit: bool,
    best_effort: bool,
) -> None:
    try:
        session.add(row)
        if commit:
            await session.commit()
    except SQLAlchemyError as exc:
        if commit:
            await session.rollback()
        if not best_effort:
            raise
        logger.warning("audit_write_failed kind=%s", label, exc_info=exc)


async def record_activity(
    *,
    session: AsyncSession,
    admin_id: str,
    activity: str,
    occurred_at: datetime | None = None,
    commit: bool = True,
    best_effort: bool = True,
) -> None:
    # Activities are append-only; failures never break the calling flow unless asked.
    row = AdminActivity(
        admin_id=admin_id,
        activity=activity,
        timestamp=occurred_at or datetime.now(timezone.utc),
    )
    await _write(session=session, row=row, label=f"activity:{activity}", commit=commit, best_effort=best_effort)


async def record_audit_log(
    *,
    session: AsyncSession,
    admin_id: str | None,
    action: str,
    entity: str,
    entity_id: str | None = None,
    details: dict[str, Any] | None = None,
    occurred_at: datetime | None = None,
    commit: bool = True,
    best_effort: bool = True,
) -> None:
    row = AuditLog(
        admin_id=admin_id,
        action=action,
        entity=entity,
        entity_id=entity_id,
        details=sanitize_metadata(details or {}),
        timestamp=occurred_at or datetime.now(timezone.utc),
    )
    await _write(session=session, row=row, label=f"audit:{action}", commit=commit, best_effort=best_effort)


async def list_activities(*, session: AsyncSession, admin_id: str, limit: int = 50) -> list[AdminActivity]:
    result = await session.execute(
        select(AdminActivity)
        .where(AdminActivity.admin_id == admin_id)
        .order_by(AdminActivity.timestamp.desc(), AdminActivity.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_audit_logs(
    *,
    session: AsyncSession,
    admin_id: str | None = None,
    entity: str | None = None,
    limit: int = 100,
) -> list[AuditLog]:
    query = select(AuditLog)
    if admin_id is not None:
        query = query.where(AuditLog.admin_id == admin_id)
    if entity is not None:
        query = query.where(AuditLog.entity == entity)
    result = await session.execute(query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit))
    return list(result.scalars().all())
