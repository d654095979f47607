from __future__ import annotations

from starlette.requests import Request

from drcadmin.apps.api import rate_limit
from drcadmin.core.config import get_settings


def _make_request(path: str, headers: list[tuple[bytes, bytes]] | None = None) -> Request:
    # Construct a minimal ASGI scope for route-class and client-key tests.
    scope = {
        "type": "http",
        "method": "POST",
        "path": path,
        "scheme": "http",
        "server": ("test", 80),
        "client": ("198.51.100.4", 1234),
        "headers": headers or [],
        "query_string": b"",
    }
    return Request(scope)


def test_route_class_mapping() -> None:
    assert rate_limit.route_class_for_path("/v1/auth/signin") == rate_limit.ROUTE_CLASS_SIGNIN
    assert rate_limit.route_class_for_path("/v1/auth/signup") == rate_limit.ROUTE_CLASS_SIGNIN
    assert rate_limit.route_class_for_path("/v1/auth/forgot-password") == rate_limit.ROUTE_CLASS_RECOVERY
    assert rate_limit.route_class_for_path("/v1/auth/resend-verification") == rate_limit.ROUTE_CLASS_RECOVERY
    assert rate_limit.route_class_for_path("/v1/auth/reset-password") == rate_limit.ROUTE_CLASS_TOKEN
    assert rate_limit.route_class_for_path("/v1/auth/verify-email") == rate_limit.ROUTE_CLASS_TOKEN
    assert rate_limit.route_class_for_path("/v1/auth/me") is None
    assert rate_limit.route_class_for_path("/v1/auth/change-password") is None


def test_client_key_prefers_forwarded_address() -> None:
    direct = _make_request("/v1/auth/signin")
    forwarded = _make_request("/v1/auth/signin", [(b"x-forwarded-for", b"203.0.113.7, 10.0.0.1")])
    assert rate_limit.client_key_for_request(direct) == "198.51.100.4"
    assert rate_limit.client_key_for_request(forwarded) == "203.0.113.7"


def test_limits_follow_settings(monkeypatch) -> None:
    monkeypatch.setenv("AUTH_TOKEN_RATE_LIMIT", "7")
    monkeypatch.setenv("AUTH_TOKEN_RATE_LIMIT_PERIOD_S", "60")
    get_settings.cache_clear()
    limits = rate_limit._limits_for_route(rate_limit.ROUTE_CLASS_TOKEN)
    assert limits == rate_limit.WindowLimit(limit=7, period_s=60)
