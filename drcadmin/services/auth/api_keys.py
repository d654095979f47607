from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Callable, Literal

from sqlalchemy import and_, case, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from drcadmin.core.config import Settings, get_settings
from drcadmin.core.errors import ErrorKind
from drcadmin.core.result import ServiceResult, service_boundary
from drcadmin.domain.models import Admin, ApiKey, ApiRateLimitWindow, ApiUsageLog
from drcadmin.domain.views import ApiKeyView
from drcadmin.persistence.db import insert_ignoring_conflict, transaction
from drcadmin.services.audit import record_activity, record_audit_log
from drcadmin.services.auth.tokens import generate_api_key, hash_token, tokens_match


logger = logging.getLogger(__name__)

ALL_ENDPOINTS = "*"
MAX_NAME_LENGTH = 128

_METHOD_PERMISSIONS: dict[str, str] = {
    "GET": "can_read",
    "HEAD": "can_read",
    "POST": "can_write",
    "PUT": "can_write",
    "PATCH": "can_write",
    "DELETE": "can_delete",
}

UsageTimeframe = Literal["hour", "day", "week", "month"]
_TIMEFRAMES: dict[str, timedelta] = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
}

MSG_KEY_NOT_FOUND = "API key not found"
MSG_NAME_REQUIRED = "Name is required"
MSG_PERMISSION_REQUIRED = "At least one permission must be selected"
MSG_KEY_LIMIT = "Maximum number of active API keys reached"
MSG_KEY_REVOKED_IMMUTABLE = "Revoked API keys cannot be modified"
MSG_KEY_REVOKED_REGENERATE = "Revoked API keys cannot be regenerated"
MSG_KEY_EXPIRED_REGENERATE = "Expired API keys cannot be regenerated"
MSG_AUTH_MISSING = "API key is required"
MSG_AUTH_INVALID = "Invalid API key"
MSG_AUTH_REVOKED = "API key has been revoked"
MSG_AUTH_INACTIVE = "API key is inactive"
MSG_AUTH_EXPIRED = "API key has expired"
MSG_AUTH_OWNER_INACTIVE = "API key owner is inactive"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_allowed_endpoints(raw: str | None) -> str:
    # Blank or whitespace-only lists mean the key is unrestricted.
    patterns = [part.strip() for part in (raw or "").split(",") if part.strip()]
    if not patterns:
        return ALL_ENDPOINTS
    return ",".join(patterns)


def endpoint_allowed(allowed_endpoints: str, endpoint: str) -> bool:
    """Match ``endpoint`` against comma-separated patterns.

    ``*`` allows everything, ``/prefix/*`` allows anything under the prefix, and any other
    pattern must match exactly.
    """
    for pattern in (part.strip() for part in allowed_endpoints.split(",")):
        if not pattern:
            continue
        if pattern == ALL_ENDPOINTS:
            return True
        if pattern.endswith("/*") and endpoint.startswith(pattern[:-1]):
            return True
        if pattern == endpoint:
            return True
    return False


def has_permission(api_key: "ApiKeyPrincipal | ApiKeyView | ApiKey", endpoint: str, method: str) -> bool:
    # Endpoint scope first, then the permission flag bound to the HTTP method.
    if not endpoint_allowed(api_key.allowed_endpoints, endpoint):
        return False
    flag = _METHOD_PERMISSIONS.get(method.upper())
    if flag is None:
        return False
    return bool(getattr(api_key, flag))


@dataclass(frozen=True)
class ApiKeySpec:
    name: str
    description: str | None = None
    can_read: bool = True
    can_write: bool = False
    can_delete: bool = False
    can_manage_keys: bool = False
    allowed_endpoints: str = ALL_ENDPOINTS
    rate_limit: int | None = None
    rate_limit_period: int | None = None
    expires_in_days: int | None = None


@dataclass(frozen=True)
class ApiKeyPatch:
    # None leaves the field unchanged.
    name: str | None = None
    description: str | None = None
    can_read: bool | None = None
    can_write: bool | None = None
    can_delete: bool | None = None
    can_manage_keys: bool | None = None
    allowed_endpoints: str | None = None
    rate_limit: int | None = None
    rate_limit_period: int | None = None
    is_active: bool | None = None


@dataclass(frozen=True)
class IssuedApiKey:
    # ``key`` is the plaintext secret; it is never retrievable after this.
    key: str
    api_key: ApiKeyView


@dataclass(frozen=True)
class ApiKeyPrincipal:
    # The authenticated key as public routes see it; carries no secret material.
    api_key_id: str
    admin_id: str
    name: str
    prefix: str
    can_read: bool
    can_write: bool
    can_delete: bool
    can_manage_keys: bool
    allowed_endpoints: str
    rate_limit: int
    rate_limit_period: int


@dataclass(frozen=True)
class RateLimitDecision:
    # Outcome of one metered call against the key's current window.
    allowed: bool
    limit: int
    remaining: int
    window_start: datetime
    window_end: datetime

    def retry_after_s(self, now: datetime) -> int:
        # Whole seconds until the window closes, never zero.
        return max(1, int((self.window_end - now).total_seconds() + 0.999))


@dataclass(frozen=True)
class ApiKeyUsage:
    timeframe: str
    total_requests: int
    successful_requests: int
    failed_requests: int
    average_response_time_ms: float | None


def _validate_fields(
    *,
    name: str,
    can_read: bool,
    can_write: bool,
    can_delete: bool,
    allowed_endpoints: str,
    rate_limit: int,
    rate_limit_period: int,
) -> str | None:
    # First failing rule wins; the same checks guard create and update.
    if not name:
        return MSG_NAME_REQUIRED
    if len(name) > MAX_NAME_LENGTH:
        return f"Name must not exceed {MAX_NAME_LENGTH} characters"
    if not (can_read or can_write or can_delete):
        return MSG_PERMISSION_REQUIRED
    for pattern in allowed_endpoints.split(","):
        if pattern != ALL_ENDPOINTS and not pattern.startswith("/"):
            return "Allowed endpoints must be '*' or paths starting with '/'"
    if rate_limit < 1:
        return "Rate limit must be a positive integer"
    if rate_limit_period < 1:
        return "Rate limit period must be a positive number of seconds"
    return None


class ApiKeyService:
    """Issue, edit, revoke and meter API keys for programmatic consumers."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        resolved = settings or get_settings()
        self._default_rate_limit = resolved.api_key_default_rate_limit
        self._default_rate_limit_period = resolved.api_key_default_rate_limit_period_s
        self._default_expires_in_days = resolved.api_key_default_expires_in_days
        self._max_active_per_admin = resolved.api_key_max_active_per_admin
        self._usage_retention_days = resolved.api_usage_retention_days
        self._store_timeout_s = resolved.store_operation_timeout_s
        self._time_provider = time_provider or _utc_now

    def now(self) -> datetime:
        return self._time_provider()

    async def _owned_key(self, *, session: AsyncSession, key_id: str, admin_id: str) -> ApiKey | None:
        # Keys owned by someone else are indistinguishable from missing ones.
        return (
            await session.execute(select(ApiKey).where(ApiKey.id == key_id, ApiKey.admin_id == admin_id))
        ).scalar_one_or_none()

    async def _record(self, *, session: AsyncSession, admin_id: str, verb: str, key: ApiKey) -> None:
        # Every key mutation lands in both the activity feed and the audit trail.
        await record_activity(
            session=session,
            admin_id=admin_id,
            activity=f"API_KEY_{verb}: {key.name}",
            occurred_at=self.now(),
        )
        await record_audit_log(
            session=session,
            admin_id=admin_id,
            action=verb,
            entity="api_key",
            entity_id=key.id,
            details={"name": key.name, "prefix": key.prefix},
            occurred_at=self.now(),
        )

    @service_boundary("api_keys.create", failure_message="Failed to create API key")
    async def create_api_key(
        self,
        *,
        session: AsyncSession,
        admin_id: str,
        spec: ApiKeySpec,
    ) -> ServiceResult[IssuedApiKey]:
        # Unset limits fall back to the configured defaults before validation.
        name = spec.name.strip()
        allowed_endpoints = normalize_allowed_endpoints(spec.allowed_endpoints)
        rate_limit = spec.rate_limit if spec.rate_limit is not None else self._default_rate_limit
        rate_limit_period = (
            spec.rate_limit_period if spec.rate_limit_period is not None else self._default_rate_limit_period
        )
        error = _validate_fields(
            name=name,
            can_read=spec.can_read,
            can_write=spec.can_write,
            can_delete=spec.can_delete,
            allowed_endpoints=allowed_endpoints,
            rate_limit=rate_limit,
            rate_limit_period=rate_limit_period,
        )
        if error:
            return ServiceResult.failure(ErrorKind.VALIDATION, error)
        expires_in_days = spec.expires_in_days if spec.expires_in_days is not None else self._default_expires_in_days
        if expires_in_days < 1:
            return ServiceResult.failure(ErrorKind.VALIDATION, "Expiry must be at least one day")

        active_count = (
            await session.execute(
                select(func.count(ApiKey.id)).where(
                    ApiKey.admin_id == admin_id,
                    ApiKey.is_active.is_(True),
                    ApiKey.revoked_at.is_(None),
                )
            )
        ).scalar_one()
        if active_count >= self._max_active_per_admin:
            return ServiceResult.failure(ErrorKind.CONFLICT, MSG_KEY_LIMIT)

        raw_key, prefix, key_hash = generate_api_key()
        now = self.now()
        row = ApiKey(
            admin_id=admin_id,
            key_hash=key_hash,
            prefix=prefix,
            name=name,
            description=(spec.description or "").strip() or None,
            can_read=spec.can_read,
            can_write=spec.can_write,
            can_delete=spec.can_delete,
            can_manage_keys=spec.can_manage_keys,
            allowed_endpoints=allowed_endpoints,
            rate_limit=rate_limit,
            rate_limit_period=rate_limit_period,
            is_active=True,
            expires_at=now + timedelta(days=expires_in_days),
            created_at=now,
            updated_at=now,
            usage_count=0,
        )
        async with transaction(session):
            session.add(row)
        logger.info("api_key_created admin_id=%s key_id=%s prefix=%s", admin_id, row.id, prefix)
        await self._record(session=session, admin_id=admin_id, verb="CREATED", key=row)
        return ServiceResult.success(
            IssuedApiKey(key=raw_key, api_key=ApiKeyView.from_model(row)),
            message="API key created successfully",
        )

    @service_boundary("api_keys.list", failure_message="Failed to load API keys")
    async def list_api_keys(self, *, session: AsyncSession, admin_id: str) -> ServiceResult[list[ApiKeyView]]:
        # Newest first, revoked keys included so the console can show history.
        result = await session.execute(
            select(ApiKey).where(ApiKey.admin_id == admin_id).order_by(ApiKey.created_at.desc())
        )
        return ServiceResult.success([ApiKeyView.from_model(row) for row in result.scalars().all()])

    @service_boundary("api_keys.get", failure_message="Failed to load API key")
    async def get_api_key(self, *, session: AsyncSession, key_id: str, admin_id: str) -> ServiceResult[ApiKeyView]:
        row = await self._owned_key(session=session, key_id=key_id, admin_id=admin_id)
        if row is None:
            return ServiceResult.failure(ErrorKind.NOT_FOUND, MSG_KEY_NOT_FOUND)
        return ServiceResult.success(ApiKeyView.from_model(row))

    @service_boundary("api_keys.update", failure_message="Failed to update API key")
    async def update_api_key(
        self,
        *,
        session: AsyncSession,
        key_id: str,
        admin_id: str,
        patch: ApiKeyPatch,
    ) -> ServiceResult[ApiKeyView]:
        row = await self._owned_key(session=session, key_id=key_id, admin_id=admin_id)
        if row is None:
            return ServiceResult.failure(ErrorKind.NOT_FOUND, MSG_KEY_NOT_FOUND)
        if row.revoked_at is not None:
            return ServiceResult.failure(ErrorKind.CONFLICT, MSG_KEY_REVOKED_IMMUTABLE)

        name = patch.name.strip() if patch.name is not None else row.name
        can_read = patch.can_read if patch.can_read is not None else row.can_read
        can_write = patch.can_write if patch.can_write is not None else row.can_write
        can_delete = patch.can_delete if patch.can_delete is not None else row.can_delete
        allowed_endpoints = (
            normalize_allowed_endpoints(patch.allowed_endpoints)
            if patch.allowed_endpoints is not None
            else row.allowed_endpoints
        )
        rate_limit = patch.rate_limit if patch.rate_limit is not None else row.rate_limit
        rate_limit_period = patch.rate_limit_period if patch.rate_limit_period is not None else row.rate_limit_period
        error = _validate_fields(
            name=name,
            can_read=can_read,
            can_write=can_write,
            can_delete=can_delete,
            allowed_endpoints=allowed_endpoints,
            rate_limit=rate_limit,
            rate_limit_period=rate_limit_period,
        )
        if error:
            return ServiceResult.failure(ErrorKind.VALIDATION, error)

        async with transaction(session):
            row.name = name
            if patch.description is not None:
                row.description = patch.description.strip() or None
            row.can_read = can_read
            row.can_write = can_write
            row.can_delete = can_delete
            if patch.can_manage_keys is not None:
                row.can_manage_keys = patch.can_manage_keys
            row.allowed_endpoints = allowed_endpoints
            row.rate_limit = rate_limit
            row.rate_limit_period = rate_limit_period
            if patch.is_active is not None:
                row.is_active = patch.is_active
            row.updated_at = self.now()
        logger.info("api_key_updated admin_id=%s key_id=%s", admin_id, row.id)
        await self._record(session=session, admin_id=admin_id, verb="UPDATED", key=row)
        return ServiceResult.success(ApiKeyView.from_model(row), message="API key updated successfully")

    @service_boundary("api_keys.regenerate", failure_message="Failed to regenerate API key")
    async def regenerate_api_key(
        self,
        *,
        session: AsyncSession,
        key_id: str,
        admin_id: str,
    ) -> ServiceResult[IssuedApiKey]:
        row = await self._owned_key(session=session, key_id=key_id, admin_id=admin_id)
        if row is None:
            return ServiceResult.failure(ErrorKind.NOT_FOUND, MSG_KEY_NOT_FOUND)
        if row.revoked_at is not None:
            return ServiceResult.failure(ErrorKind.CONFLICT, MSG_KEY_REVOKED_REGENERATE)
        # Regenerate rotates the secret only; an expired lifetime stays expired.
        if row.expires_at is not None and self.now() >= row.expires_at:
            return ServiceResult.failure(ErrorKind.CONFLICT, MSG_KEY_EXPIRED_REGENERATE)

        raw_key, prefix, key_hash = generate_api_key()
        async with transaction(session):
            # Replacing the digest invalidates the old secret in the same commit.
            row.key_hash = key_hash
            row.prefix = prefix
            row.is_active = True
            row.last_used = None
            row.usage_count = 0
            row.updated_at = self.now()
        logger.info("api_key_regenerated admin_id=%s key_id=%s prefix=%s", admin_id, row.id, prefix)
        await self._record(session=session, admin_id=admin_id, verb="REGENERATED", key=row)
        return ServiceResult.success(
            IssuedApiKey(key=raw_key, api_key=ApiKeyView.from_model(row)),
            message="API key regenerated successfully",
        )

    @service_boundary("api_keys.revoke", failure_message="Failed to revoke API key")
    async def revoke_api_key(self, *, session: AsyncSession, key_id: str, admin_id: str) -> ServiceResult[bool]:
        row = await self._owned_key(session=session, key_id=key_id, admin_id=admin_id)
        if row is None:
            return ServiceResult.failure(ErrorKind.NOT_FOUND, MSG_KEY_NOT_FOUND)
        if row.revoked_at is not None:
            return ServiceResult.success(True, message="API key already revoked")
        # Revocation is terminal; the row stays for usage history and audit joins.
        now = self.now()
        async with transaction(session):
            row.revoked_at = now
            row.is_active = False
            row.updated_at = now
        logger.info("api_key_revoked admin_id=%s key_id=%s", admin_id, row.id)
        await self._record(session=session, admin_id=admin_id, verb="REVOKED", key=row)
        return ServiceResult.success(True, message="API key revoked successfully")

    @service_boundary("api_keys.authenticate", failure_message="Authentication temporarily unavailable")
    async def authenticate(self, *, session: AsyncSession, presented_key: str | None) -> ServiceResult[ApiKeyPrincipal]:
        # Lookup is by digest only; the plaintext key never reaches the store.
        if not presented_key:
            return ServiceResult.failure(ErrorKind.UNAUTHORIZED, MSG_AUTH_MISSING)
        key_hash = hash_token(presented_key)
        row = (
            await session.execute(
                select(ApiKey, Admin).join(Admin, Admin.id == ApiKey.admin_id).where(ApiKey.key_hash == key_hash)
            )
        ).first()
        if row is None:
            return ServiceResult.failure(ErrorKind.UNAUTHORIZED, MSG_AUTH_INVALID)
        api_key, admin = row
        if not tokens_match(key_hash, api_key.key_hash):
            return ServiceResult.failure(ErrorKind.UNAUTHORIZED, MSG_AUTH_INVALID)
        if api_key.revoked_at is not None:
            return ServiceResult.failure(ErrorKind.UNAUTHORIZED, MSG_AUTH_REVOKED)
        if not api_key.is_active:
            return ServiceResult.failure(ErrorKind.UNAUTHORIZED, MSG_AUTH_INACTIVE)
        now = self.now()
        if api_key.expires_at is not None and now >= api_key.expires_at:
            return ServiceResult.failure(ErrorKind.UNAUTHORIZED, MSG_AUTH_EXPIRED)
        if not admin.is_active:
            return ServiceResult.failure(ErrorKind.UNAUTHORIZED, MSG_AUTH_OWNER_INACTIVE)

        # Lifetime counter; independent of rate-limit windows.
        async with transaction(session):
            await session.execute(
                update(ApiKey)
                .where(ApiKey.id == api_key.id)
                .values(usage_count=ApiKey.usage_count + 1, last_used=now)
                .execution_options(synchronize_session=False)
            )
        return ServiceResult.success(
            ApiKeyPrincipal(
                api_key_id=api_key.id,
                admin_id=api_key.admin_id,
                name=api_key.name,
                prefix=api_key.prefix,
                can_read=api_key.can_read,
                can_write=api_key.can_write,
                can_delete=api_key.can_delete,
                can_manage_keys=api_key.can_manage_keys,
                allowed_endpoints=api_key.allowed_endpoints,
                rate_limit=api_key.rate_limit,
                rate_limit_period=api_key.rate_limit_period,
            )
        )

    async def _ensure_window(
        self,
        *,
        session: AsyncSession,
        api_key_id: str,
        endpoint: str,
        window_start: datetime,
        window_end: datetime,
        now: datetime,
    ) -> None:
        values = {
            "api_key_id": api_key_id,
            "endpoint": endpoint,
            "request_count": 0,
            "window_start": window_start,
            "window_end": window_end,
            "created_at": now,
            "updated_at": now,
        }
        await insert_ignoring_conflict(
            session,
            ApiRateLimitWindow,
            values=values,
            conflict_columns=("api_key_id", "endpoint", "window_start"),
        )

    @service_boundary("api_keys.check_rate_limit", failure_message="Rate limiting temporarily unavailable")
    async def check_rate_limit(
        self,
        *,
        session: AsyncSession,
        api_key_id: str,
        endpoint: str,
    ) -> ServiceResult[RateLimitDecision]:
        limits = (
            await session.execute(
                select(ApiKey.rate_limit, ApiKey.rate_limit_period).where(ApiKey.id == api_key_id)
            )
        ).first()
        if limits is None:
            return ServiceResult.failure(ErrorKind.NOT_FOUND, MSG_KEY_NOT_FOUND)
        limit = int(limits[0])
        period = max(1, int(limits[1]))
        now = self.now()
        window_start = datetime.fromtimestamp((int(now.timestamp()) // period) * period, tz=timezone.utc)
        window_end = window_start + timedelta(seconds=period)

        async with transaction(session):
            await self._ensure_window(
                session=session,
                api_key_id=api_key_id,
                endpoint=endpoint,
                window_start=window_start,
                window_end=window_end,
                now=now,
            )
            # Single conditional increment: concurrent callers cannot both pass the check.
            result = await session.execute(
                update(ApiRateLimitWindow)
                .where(
                    ApiRateLimitWindow.api_key_id == api_key_id,
                    ApiRateLimitWindow.endpoint == endpoint,
                    ApiRateLimitWindow.window_start == window_start,
                    ApiRateLimitWindow.request_count < limit,
                )
                .values(request_count=ApiRateLimitWindow.request_count + 1, updated_at=now)
                .returning(ApiRateLimitWindow.request_count)
                .execution_options(synchronize_session=False)
            )
            new_count = result.scalar_one_or_none()

        if new_count is None:
            logger.info("api_key_rate_limited api_key_id=%s endpoint=%s limit=%s", api_key_id, endpoint, limit)
            return ServiceResult.success(
                RateLimitDecision(
                    allowed=False,
                    limit=limit,
                    remaining=0,
                    window_start=window_start,
                    window_end=window_end,
                )
            )
        return ServiceResult.success(
            RateLimitDecision(
                allowed=True,
                limit=limit,
                remaining=max(limit - int(new_count), 0),
                window_start=window_start,
                window_end=window_end,
            )
        )

    async def log_api_usage(
        self,
        *,
        session: AsyncSession,
        api_key_id: str,
        endpoint: str,
        method: str,
        status_code: int,
        ip_address: str | None = None,
        user_agent: str | None = None,
        response_time_ms: int | None = None,
        request_size: int | None = None,
        response_size: int | None = None,
    ) -> None:
        # Usage logs feed analytics only; a failed write never fails the request.
        row = ApiUsageLog(
            api_key_id=api_key_id,
            endpoint=endpoint,
            method=method.upper(),
            status_code=status_code,
            ip_address=ip_address,
            user_agent=user_agent,
            request_time=self.now(),
            response_time_ms=response_time_ms,
            request_size=request_size,
            response_size=response_size,
        )
        try:
            session.add(row)
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.warning("api_usage_log_failed api_key_id=%s endpoint=%s", api_key_id, endpoint, exc_info=exc)

    @service_boundary("api_keys.usage", failure_message="Failed to load API key usage")
    async def get_api_key_usage(
        self,
        *,
        session: AsyncSession,
        key_id: str,
        admin_id: str,
        timeframe: UsageTimeframe = "day",
    ) -> ServiceResult[ApiKeyUsage]:
        # Aggregate in SQL so large usage tables never load into memory.
        window = _TIMEFRAMES.get(timeframe)
        if window is None:
            return ServiceResult.failure(ErrorKind.VALIDATION, "Timeframe must be one of hour, day, week, month")
        row = await self._owned_key(session=session, key_id=key_id, admin_id=admin_id)
        if row is None:
            return ServiceResult.failure(ErrorKind.NOT_FOUND, MSG_KEY_NOT_FOUND)
        since = self.now() - window
        successful = case(
            (and_(ApiUsageLog.status_code >= 200, ApiUsageLog.status_code < 300), 1),
            else_=0,
        )
        failed = case((ApiUsageLog.status_code >= 400, 1), else_=0)
        total, ok_count, failed_count, avg_ms = (
            await session.execute(
                select(
                    func.count(ApiUsageLog.id),
                    func.coalesce(func.sum(successful), 0),
                    func.coalesce(func.sum(failed), 0),
                    func.avg(ApiUsageLog.response_time_ms),
                ).where(ApiUsageLog.api_key_id == key_id, ApiUsageLog.request_time >= since)
            )
        ).one()
        return ServiceResult.success(
            ApiKeyUsage(
                timeframe=timeframe,
                total_requests=int(total or 0),
                successful_requests=int(ok_count or 0),
                failed_requests=int(failed_count or 0),
                average_response_time_ms=float(avg_ms) if avg_ms is not None else None,
            )
        )

    async def prune_api_usage_logs(self, *, session: AsyncSession, older_than_days: int | None = None) -> int:
        # Caller commits; maintenance runs this inside its own transaction.
        days = older_than_days if older_than_days is not None else self._usage_retention_days
        cutoff = self.now() - timedelta(days=days)
        result = await session.execute(delete(ApiUsageLog).where(ApiUsageLog.request_time < cutoff))
        return result.rowcount or 0


def get_api_key_service() -> ApiKeyService:
    return ApiKeyService()
