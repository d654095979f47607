from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


ROLE_ADMIN = "ADMIN"
ROLE_SUPER_ADMIN = "SUPER_ADMIN"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


class UtcDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    SQLite drops tzinfo on round-trip, so values are normalized to naive UTC on write
    there and re-tagged as UTC on read.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


_JSON = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class Admin(Base):
    __tablename__ = "admins"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    phone: Mapped[str] = mapped_column(String(32), unique=True)
    email: Mapped[str] = mapped_column(String(255), unique=True)
    # Only the bcrypt digest is persisted.
    password_hash: Mapped[str] = mapped_column(String)
    name: Mapped[str] = mapped_column(String(100))
    role: Mapped[str] = mapped_column(String(32), default=ROLE_ADMIN, server_default=text("'ADMIN'"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    is_email_verified: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))
    two_factor_enabled: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))
    two_factor_secret: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now, onupdate=_utc_now)
    last_login: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)


class AdminSession(Base):
    __tablename__ = "admin_sessions"
    __table_args__ = (
        Index("ix_admin_sessions_admin_active", "admin_id", "is_active"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    admin_id: Mapped[str] = mapped_column(String, ForeignKey("admins.id", ondelete="CASCADE"), index=True)
    session_id: Mapped[str] = mapped_column(String, unique=True)
    # Short prefix for operator display; the bearer token is stored only as a digest.
    token_prefix: Mapped[str] = mapped_column(String(16))
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)
    expires_at: Mapped[datetime] = mapped_column(UtcDateTime)
    last_used: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    device_type: Mapped[str | None] = mapped_column(String(32), nullable=True)


class PasswordReset(Base):
    __tablename__ = "password_resets"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    admin_id: Mapped[str] = mapped_column(String, ForeignKey("admins.id", ondelete="CASCADE"), index=True)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    # Flipped exactly once, in the same transaction as the password update.
    is_used: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)
    expires_at: Mapped[datetime] = mapped_column(UtcDateTime, index=True)


class EmailVerification(Base):
    __tablename__ = "email_verifications"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    admin_id: Mapped[str] = mapped_column(String, ForeignKey("admins.id", ondelete="CASCADE"), index=True)
    email: Mapped[str] = mapped_column(String(255))
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    expires_at: Mapped[datetime] = mapped_column(UtcDateTime)
    verified_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)


class ApiKey(Base):
    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    admin_id: Mapped[str] = mapped_column(String, ForeignKey("admins.id", ondelete="CASCADE"), index=True)
    # Store only the hashed key to avoid plaintext credentials at rest.
    key_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    prefix: Mapped[str] = mapped_column(String(16))
    name: Mapped[str] = mapped_column(String(128))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    can_read: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    can_write: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))
    can_delete: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))
    can_manage_keys: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))
    # Comma-separated endpoint patterns; "*" allows every endpoint.
    allowed_endpoints: Mapped[str] = mapped_column(Text, default="*", server_default=text("'*'"))
    rate_limit: Mapped[int] = mapped_column(Integer, default=100, server_default=text("100"))
    rate_limit_period: Mapped[int] = mapped_column(Integer, default=3600, server_default=text("3600"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    expires_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now, onupdate=_utc_now)
    last_used: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, server_default=text("0"))


class ApiRateLimitWindow(Base):
    __tablename__ = "api_rate_limits"
    __table_args__ = (
        UniqueConstraint("api_key_id", "endpoint", "window_start", name="uq_api_rate_limits_key_endpoint_window"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    api_key_id: Mapped[str] = mapped_column(String, ForeignKey("api_keys.id", ondelete="CASCADE"), index=True)
    endpoint: Mapped[str] = mapped_column(String(255))
    request_count: Mapped[int] = mapped_column(Integer, default=0, server_default=text("0"))
    window_start: Mapped[datetime] = mapped_column(UtcDateTime)
    window_end: Mapped[datetime] = mapped_column(UtcDateTime)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now, onupdate=_utc_now)


class ClientRateLimitWindow(Base):
    # Per-client fixed windows guarding the unauthenticated credential routes.
    __tablename__ = "client_rate_limits"
    __table_args__ = (
        UniqueConstraint("client_key", "route_class", "window_start", name="uq_client_rate_limits_client_route_window"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_key: Mapped[str] = mapped_column(String(64))
    route_class: Mapped[str] = mapped_column(String(32))
    request_count: Mapped[int] = mapped_column(Integer, default=0, server_default=text("0"))
    window_start: Mapped[datetime] = mapped_column(UtcDateTime)
    window_end: Mapped[datetime] = mapped_column(UtcDateTime, index=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now, onupdate=_utc_now)


class ApiUsageLog(Base):
    __tablename__ = "api_usage_logs"
    __table_args__ = (
        Index("ix_api_usage_logs_key_time", "api_key_id", "request_time"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    api_key_id: Mapped[str] = mapped_column(String, ForeignKey("api_keys.id", ondelete="CASCADE"))
    endpoint: Mapped[str] = mapped_column(String(255))
    method: Mapped[str] = mapped_column(String(16))
    status_code: Mapped[int] = mapped_column(Integer)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    request_time: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)
    response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    request_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_size: Mapped[int | None] = mapped_column(Integer, nullable=True)


class AdminActivity(Base):
    __tablename__ = "admin_activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    admin_id: Mapped[str] = mapped_column(String, ForeignKey("admins.id", ondelete="CASCADE"), index=True)
    activity: Mapped[str] = mapped_column(String(255))
    timestamp: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now, index=True)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    admin_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("admins.id", ondelete="SET NULL"), nullable=True, index=True
    )
    action: Mapped[str] = mapped_column(String(64))
    entity: Mapped[str] = mapped_column(String(64))
    entity_id: Mapped[str | None] = mapped_column(String, nullable=True)
    # Sanitized before persistence; never carries secrets.
    details: Mapped[dict[str, Any]] = mapped_column(_JSON, default=dict)
    timestamp: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now, index=True)
