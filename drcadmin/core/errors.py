from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    RATE_LIMITED = "rate_limited"
    SERVICE_UNAVAILABLE = "service_unavailable"


class DrcAdminError(Exception):
    """Base error for the admin console credential services."""

    kind: ErrorKind = ErrorKind.SERVICE_UNAVAILABLE
    code: str = "SERVICE_UNAVAILABLE"
    status_code: int = 503

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class UnauthorizedError(DrcAdminError):
    """Missing, invalid, revoked or expired credential."""

    kind = ErrorKind.UNAUTHORIZED
    code = "AUTH_UNAUTHORIZED"
    status_code = 401


class ForbiddenError(DrcAdminError):
    """Authenticated caller lacks the role or permission."""

    kind = ErrorKind.FORBIDDEN
    code = "AUTH_FORBIDDEN"
    status_code = 403


class NotFoundError(DrcAdminError):
    """Entity does not exist or does not belong to the caller."""

    kind = ErrorKind.NOT_FOUND
    code = "NOT_FOUND"
    status_code = 404


class ValidationError(DrcAdminError):
    """Malformed input or a failed password-strength rule."""

    kind = ErrorKind.VALIDATION
    code = "VALIDATION_ERROR"
    status_code = 422


class ConflictError(DrcAdminError):
    """Unique-constraint or state conflict."""

    kind = ErrorKind.CONFLICT
    code = "CONFLICT"
    status_code = 409


class RateLimitedError(DrcAdminError):
    """API key exceeded its window quota."""

    kind = ErrorKind.RATE_LIMITED
    code = "RATE_LIMITED"
    status_code = 429


class ServiceUnavailableError(DrcAdminError):
    """Transient store or email failure; safe for the caller to retry."""


_ERRORS_BY_KIND: dict[ErrorKind, type[DrcAdminError]] = {
    ErrorKind.UNAUTHORIZED: UnauthorizedError,
    ErrorKind.FORBIDDEN: ForbiddenError,
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.CONFLICT: ConflictError,
    ErrorKind.RATE_LIMITED: RateLimitedError,
    ErrorKind.SERVICE_UNAVAILABLE: ServiceUnavailableError,
}


def error_for_kind(kind: ErrorKind) -> type[DrcAdminError]:
    return _ERRORS_BY_KIND[kind]
