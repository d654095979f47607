from __future__ import annotations

from typing import Any

from drcadmin.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": _error_example(code=code, message=message, details=details)}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    401: _response("Unauthorized", "AUTH_UNAUTHORIZED", "Session not found"),
    403: _response("Forbidden", "AUTH_FORBIDDEN", "Insufficient role for this operation"),
    404: _response("Not found", "NOT_FOUND", "Resource not found"),
    409: _response("Conflict", "CONFLICT", "An account with this email already exists"),
    422: _response("Validation error", "VALIDATION_ERROR", "Password must be at least 8 characters long"),
    429: _response(
        "Rate limited",
        "RATE_LIMITED",
        "Rate limit exceeded",
        details={"limit": 100, "remaining": 0, "retry_after_s": 42},
    ),
    503: _response("Service unavailable", "SERVICE_UNAVAILABLE", "Service temporarily unavailable"),
}
