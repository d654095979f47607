from __future__ import annotations

from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from drcadmin.apps.api import rate_limit
from drcadmin.apps.api.main import create_app
from drcadmin.core.config import get_settings
from drcadmin.domain.models import ClientRateLimitWindow
from drcadmin.persistence.db import SessionLocal
from drcadmin.tests.utils.auth import DEFAULT_PASSWORD, Clock, bearer, create_test_admin


_WRONG_PASSWORD = "Wr0ng!Password"


def _build_app(monkeypatch, **env_overrides: str):
    # Apply env overrides and reset cached settings/limiter state before building the app.
    for key, value in env_overrides.items():
        monkeypatch.setenv(key, str(value))
    get_settings.cache_clear()
    rate_limit.reset_client_rate_limiter_state()
    return create_app()


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.fixture(autouse=True)
def _reset_limiter() -> None:
    yield
    rate_limit.reset_client_rate_limiter_state()


class _UnreachableLimiter(rate_limit.ClientRateLimiter):
    async def check(self, **kwargs):  # type: ignore[override]
        raise OperationalError("UPDATE client_rate_limits", {}, Exception("connection refused"))


@pytest.mark.asyncio
async def test_signin_is_throttled_per_client_address(monkeypatch) -> None:
    admin = await create_test_admin()
    app = _build_app(monkeypatch, AUTH_SIGNIN_RATE_LIMIT="3", AUTH_SIGNIN_RATE_LIMIT_PERIOD_S="900")
    payload = {"email": admin.email, "password": _WRONG_PASSWORD}
    async with _client(app) as client:
        attempts = [await client.post("/v1/auth/signin", json=payload) for _ in range(3)]
        blocked = await client.post("/v1/auth/signin", json={"email": admin.email, "password": DEFAULT_PASSWORD})
        other_client = await client.post(
            "/v1/auth/signin",
            json=payload,
            headers={"X-Forwarded-For": "203.0.113.9"},
        )

    assert [response.status_code for response in attempts] == [401, 401, 401]
    assert blocked.status_code == 429
    body = blocked.json()
    assert body["error"]["code"] == "RATE_LIMITED"
    assert body["error"]["message"] == "Too many requests"
    assert body["error"]["details"]["route_class"] == rate_limit.ROUTE_CLASS_SIGNIN
    assert 0 < int(blocked.headers["Retry-After"]) <= 900
    assert blocked.headers["X-RateLimit-Limit"] == "3"
    assert blocked.headers["X-RateLimit-Remaining"] == "0"
    assert other_client.status_code == 401

    async with SessionLocal() as session:
        windows = (
            await session.execute(
                select(ClientRateLimitWindow.client_key, ClientRateLimitWindow.request_count).order_by(
                    ClientRateLimitWindow.client_key
                )
            )
        ).all()
    assert [tuple(row) for row in windows] == [("127.0.0.1", 3), ("203.0.113.9", 1)]


@pytest.mark.asyncio
async def test_allowed_requests_report_remaining_budget(monkeypatch) -> None:
    admin = await create_test_admin()
    app = _build_app(monkeypatch, AUTH_SIGNIN_RATE_LIMIT="5")
    async with _client(app) as client:
        first = await client.post("/v1/auth/signin", json={"email": admin.email, "password": DEFAULT_PASSWORD})
        second = await client.post("/v1/auth/signin", json={"email": admin.email, "password": DEFAULT_PASSWORD})
    assert first.status_code == 200
    assert first.headers["X-RateLimit-Limit"] == "5"
    assert first.headers["X-RateLimit-Remaining"] == "4"
    assert second.headers["X-RateLimit-Remaining"] == "3"
    assert int(first.headers["X-RateLimit-Reset"]) > 0


@pytest.mark.asyncio
async def test_window_rolls_over_after_the_period(monkeypatch) -> None:
    clock = Clock(datetime(2026, 10, 19, 10, 0, 0, tzinfo=timezone.utc))
    app = _build_app(monkeypatch, AUTH_RECOVERY_RATE_LIMIT="1", AUTH_RECOVERY_RATE_LIMIT_PERIOD_S="3600")
    app.dependency_overrides[rate_limit.client_rate_limiter_dep] = lambda: rate_limit.ClientRateLimiter(
        time_provider=clock
    )
    payload = {"email": "nobody@drc.test"}
    async with _client(app) as client:
        allowed = await client.post("/v1/auth/forgot-password", json=payload)
        blocked = await client.post("/v1/auth/resend-verification", json=payload)
        clock.advance(hours=1)
        reopened = await client.post("/v1/auth/forgot-password", json=payload)

    assert allowed.status_code == 200
    assert blocked.status_code == 429
    assert blocked.headers["Retry-After"] == "3600"
    assert reopened.status_code == 200


@pytest.mark.asyncio
async def test_session_routes_are_not_throttled(monkeypatch) -> None:
    admin = await create_test_admin()
    app = _build_app(monkeypatch, AUTH_SIGNIN_RATE_LIMIT="1")
    async with _client(app) as client:
        signed_in = await client.post("/v1/auth/signin", json={"email": admin.email, "password": DEFAULT_PASSWORD})
        token = signed_in.json()["data"]["token"]
        blocked = await client.post("/v1/auth/signin", json={"email": admin.email, "password": DEFAULT_PASSWORD})
        me = [await client.get("/v1/auth/me", headers=bearer(token)) for _ in range(3)]
    assert blocked.status_code == 429
    assert [response.status_code for response in me] == [200, 200, 200]
    assert "X-RateLimit-Limit" not in me[0].headers


@pytest.mark.asyncio
async def test_disabled_limiter_never_throttles(monkeypatch) -> None:
    app = _build_app(monkeypatch, AUTH_RATE_LIMIT_ENABLED="false", AUTH_TOKEN_RATE_LIMIT="1")
    async with _client(app) as client:
        responses = [
            await client.post("/v1/auth/verify-reset-token", json={"token": "0" * 64}) for _ in range(3)
        ]
    assert [response.status_code for response in responses] == [200, 200, 200]
    async with SessionLocal() as session:
        assert (await session.execute(select(ClientRateLimitWindow))).scalars().all() == []


@pytest.mark.asyncio
async def test_unreachable_window_store_follows_fail_mode(monkeypatch) -> None:
    admin = await create_test_admin()
    credentials = {"email": admin.email, "password": DEFAULT_PASSWORD}

    app = _build_app(monkeypatch, AUTH_RATE_LIMIT_FAIL_MODE="open")
    app.dependency_overrides[rate_limit.client_rate_limiter_dep] = lambda: _UnreachableLimiter()
    async with _client(app) as client:
        degraded = await client.post("/v1/auth/signin", json=credentials)
    assert degraded.status_code == 200
    assert degraded.headers["X-RateLimit-Status"] == "degraded"

    app = _build_app(monkeypatch, AUTH_RATE_LIMIT_FAIL_MODE="closed")
    app.dependency_overrides[rate_limit.client_rate_limiter_dep] = lambda: _UnreachableLimiter()
    async with _client(app) as client:
        refused = await client.post("/v1/auth/signin", json=credentials)
    assert refused.status_code == 503
    assert refused.json()["error"] == {"code": "RATE_LIMIT_UNAVAILABLE", "message": "Rate limiting unavailable"}


@pytest.mark.asyncio
async def test_security_headers_on_success_and_error_responses(monkeypatch) -> None:
    app = _build_app(monkeypatch)
    async with _client(app) as client:
        health = await client.get("/v1/health")
        anonymous = await client.get("/v1/auth/me")

    for response in (health, anonymous):
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
        assert response.headers["Permissions-Policy"] == "camera=(), microphone=(), geolocation=(), payment=()"
        assert response.headers["X-XSS-Protection"] == "1; mode=block"
        assert response.headers["Strict-Transport-Security"] == "max-age=63072000; includeSubDomains; preload"
    assert anonymous.status_code == 401


@pytest.mark.asyncio
async def test_hsts_can_be_turned_off(monkeypatch) -> None:
    app = _build_app(monkeypatch, SECURITY_HSTS_MAX_AGE_S="0")
    async with _client(app) as client:
        health = await client.get("/v1/health")
    assert "Strict-Transport-Security" not in health.headers
    assert health.headers["X-Frame-Options"] == "DENY"

    app = _build_app(monkeypatch, SECURITY_HEADERS_ENABLED="false")
    async with _client(app) as client:
        bare = await client.get("/v1/health")
    assert "X-Frame-Options" not in bare.headers
