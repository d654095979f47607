from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from drcadmin.domain.models import Admin, AdminSession, ApiKey


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class AdminView:
    # Admin projection that never carries the password digest or 2FA secret.
    id: str
    email: str
    phone: str
    name: str
    role: str
    is_active: bool
    is_email_verified: bool
    two_factor_enabled: bool
    created_at: datetime | None
    last_login: datetime | None

    @classmethod
    def from_model(cls, admin: Admin) -> "AdminView":
        return cls(
            id=admin.id,
            email=admin.email,
            phone=admin.phone,
            name=admin.name,
            role=admin.role,
            is_active=admin.is_active,
            is_email_verified=admin.is_email_verified,
            two_factor_enabled=admin.two_factor_enabled,
            created_at=admin.created_at,
            last_login=admin.last_login,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "phone": self.phone,
            "name": self.name,
            "role": self.role,
            "is_active": self.is_active,
            "is_email_verified": self.is_email_verified,
            "two_factor_enabled": self.two_factor_enabled,
            "created_at": _iso(self.created_at),
            "last_login": _iso(self.last_login),
        }


@dataclass(frozen=True)
class SessionView:
    session_id: str
    created_at: datetime
    expires_at: datetime
    last_used: datetime
    user_agent: str | None
    ip_address: str | None
    location: str | None
    device_type: str | None
    is_current_session: bool

    @classmethod
    def from_model(cls, row: AdminSession, *, current_session_id: str | None) -> "SessionView":
        return cls(
            session_id=row.session_id,
            created_at=row.created_at,
            expires_at=row.expires_at,
            last_used=row.last_used,
            user_agent=row.user_agent,
            ip_address=row.ip_address,
            location=row.location,
            device_type=row.device_type,
            is_current_session=current_session_id is not None and row.session_id == current_session_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
            "last_used": _iso(self.last_used),
            "user_agent": self.user_agent,
            "ip_address": self.ip_address,
            "location": self.location,
            "device_type": self.device_type,
            "is_current_session": self.is_current_session,
        }


@dataclass(frozen=True)
class ApiKeyView:
    # Listing projection: exposes the prefix, never the secret or its digest.
    id: str
    prefix: str
    name: str
    description: str | None
    can_read: bool
    can_write: bool
    can_delete: bool
    can_manage_keys: bool
    allowed_endpoints: str
    rate_limit: int
    rate_limit_period: int
    is_active: bool
    expires_at: datetime | None
    revoked_at: datetime | None
    created_at: datetime | None
    updated_at: datetime | None
    last_used: datetime | None
    usage_count: int

    @classmethod
    def from_model(cls, row: ApiKey) -> "ApiKeyView":
        return cls(
            id=row.id,
            prefix=row.prefix,
            name=row.name,
            description=row.description,
            can_read=row.can_read,
            can_write=row.can_write,
            can_delete=row.can_delete,
            can_manage_keys=row.can_manage_keys,
            allowed_endpoints=row.allowed_endpoints,
            rate_limit=row.rate_limit,
            rate_limit_period=row.rate_limit_period,
            is_active=row.is_active,
            expires_at=row.expires_at,
            revoked_at=row.revoked_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
            last_used=row.last_used,
            usage_count=row.usage_count or 0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "prefix": self.prefix,
            "name": self.name,
            "description": self.description,
            "can_read": self.can_read,
            "can_write": self.can_write,
            "can_delete": self.can_delete,
            "can_manage_keys": self.can_manage_keys,
            "allowed_endpoints": self.allowed_endpoints,
            "rate_limit": self.rate_limit,
            "rate_limit_period": self.rate_limit_period,
            "is_active": self.is_active,
            "expires_at": _iso(self.expires_at),
            "revoked_at": _iso(self.revoked_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "last_used": _iso(self.last_used),
            "usage_count": self.usage_count,
        }
