from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from drcadmin.services.auth.api_keys import (
    ApiKeyPrincipal,
    RateLimitDecision,
    endpoint_allowed,
    has_permission,
    normalize_allowed_endpoints,
)


def _principal(**overrides) -> ApiKeyPrincipal:
    values = {
        "api_key_id": "key-1",
        "admin_id": "admin-1",
        "name": "reporting",
        "prefix": "drc_abcdefgh",
        "can_read": True,
        "can_write": False,
        "can_delete": False,
        "can_manage_keys": False,
        "allowed_endpoints": "*",
        "rate_limit": 100,
        "rate_limit_period": 3600,
    }
    values.update(overrides)
    return ApiKeyPrincipal(**values)


@pytest.mark.parametrize(
    ("allowed", "endpoint", "expected"),
    [
        ("*", "/v1/apis/key-info", True),
        ("/v1/apis/*", "/v1/apis/key-info", True),
        ("/v1/apis/*", "/v1/apisx", False),
        ("/v1/apis/key-info", "/v1/apis/key-info", True),
        ("/v1/apis/key-info", "/v1/apis/key-info/extra", False),
        ("/v1/cases, /v1/apis/*", "/v1/apis/key-info", True),
        ("/v1/cases", "/v1/apis/key-info", False),
    ],
)
def test_endpoint_patterns(allowed: str, endpoint: str, expected: bool) -> None:
    assert endpoint_allowed(allowed, endpoint) is expected


def test_blank_allowed_endpoints_normalize_to_wildcard() -> None:
    assert normalize_allowed_endpoints("") == "*"
    assert normalize_allowed_endpoints(None) == "*"
    assert normalize_allowed_endpoints(" /a , ,/b/* ") == "/a,/b/*"


def test_methods_map_to_permission_flags() -> None:
    reader = _principal()
    assert has_permission(reader, "/v1/apis/key-info", "GET")
    assert has_permission(reader, "/v1/apis/key-info", "head")
    assert not has_permission(reader, "/v1/apis/key-info", "POST")
    assert not has_permission(reader, "/v1/apis/key-info", "DELETE")

    writer = _principal(can_read=False, can_write=True, can_delete=True)
    assert not has_permission(writer, "/v1/apis/key-info", "GET")
    for method in ("POST", "PUT", "PATCH"):
        assert has_permission(writer, "/v1/apis/key-info", method)
    assert has_permission(writer, "/v1/apis/key-info", "DELETE")


def test_unknown_methods_and_disallowed_endpoints_are_denied() -> None:
    principal = _principal(can_write=True, can_delete=True, allowed_endpoints="/v1/apis/*")
    assert not has_permission(principal, "/v1/apis/key-info", "OPTIONS")
    assert not has_permission(principal, "/v1/sessions", "GET")


def test_retry_after_rounds_up_and_is_at_least_one_second() -> None:
    start = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)
    decision = RateLimitDecision(
        allowed=False,
        limit=10,
        remaining=0,
        window_start=start,
        window_end=start + timedelta(seconds=60),
    )
    assert decision.retry_after_s(start + timedelta(seconds=30)) == 30
    assert decision.retry_after_s(start + timedelta(seconds=59, milliseconds=500)) == 1
    assert decision.retry_after_s(start + timedelta(seconds=90)) == 1
