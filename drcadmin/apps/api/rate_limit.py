from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import math
from typing import Callable

from fastapi import Depends, HTTPException, Request, Response, status
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from drcadmin.apps.api.deps import get_db
from drcadmin.core.config import get_settings
from drcadmin.domain.models import ClientRateLimitWindow
from drcadmin.persistence.db import insert_ignoring_conflict, transaction
from drcadmin.services.audit import get_request_context


logger = logging.getLogger(__name__)

ROUTE_CLASS_SIGNIN = "signin"
ROUTE_CLASS_RECOVERY = "recovery"
ROUTE_CLASS_TOKEN = "token"

_UNKNOWN_CLIENT = "unknown"
_MAX_CLIENT_KEY_LENGTH = 64


@dataclass(frozen=True)
class WindowLimit:
    # Requests allowed per client inside one fixed window.
    limit: int
    period_s: int


@dataclass(frozen=True)
class ClientRateLimitDecision:
    allowed: bool
    route_class: str
    limit: int
    remaining: int
    window_end: datetime
    retry_after_s: int = 0


def route_class_for_path(path: str) -> str | None:
    # Map unauthenticated credential routes to their throttling class.
    if path.endswith(("/auth/signin", "/auth/signup")):
        return ROUTE_CLASS_SIGNIN
    if path.endswith(("/auth/forgot-password", "/auth/resend-verification")):
        return ROUTE_CLASS_RECOVERY
    if path.endswith(("/auth/verify-reset-token", "/auth/reset-password", "/auth/verify-email")):
        return ROUTE_CLASS_TOKEN
    return None


def client_key_for_request(request: Request) -> str:
    # Key windows by the forwarded client address the audit trail already records.
    ip_address = get_request_context(request)["ip_address"] or _UNKNOWN_CLIENT
    return ip_address[:_MAX_CLIENT_KEY_LENGTH]


def _limits_for_route(route_class: str) -> WindowLimit:
    settings = get_settings()
    if route_class == ROUTE_CLASS_SIGNIN:
        return WindowLimit(settings.auth_signin_rate_limit, settings.auth_signin_rate_limit_period_s)
    if route_class == ROUTE_CLASS_RECOVERY:
        return WindowLimit(settings.auth_recovery_rate_limit, settings.auth_recovery_rate_limit_period_s)
    return WindowLimit(settings.auth_token_rate_limit, settings.auth_token_rate_limit_period_s)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ClientRateLimiter:
    """Fixed-window request counter keyed by client address and route class.

    Windows live in ``client_rate_limits`` so every API replica shares one count.
    """

    def __init__(self, *, time_provider: Callable[[], datetime] | None = None) -> None:
        # Allow injecting time for deterministic tests.
        self._time_provider = time_provider or _utc_now

    async def check(
        self,
        *,
        session: AsyncSession,
        client_key: str,
        route_class: str,
        limits: WindowLimit,
    ) -> ClientRateLimitDecision:
        now = self._time_provider()
        period = max(1, int(limits.period_s))
        window_start = datetime.fromtimestamp((int(now.timestamp()) // period) * period, tz=timezone.utc)
        window_end = window_start + timedelta(seconds=period)

        async with transaction(session):
            await insert_ignoring_conflict(
                session,
                ClientRateLimitWindow,
                values={
                    "client_key": client_key,
                    "route_class": route_class,
                    "request_count": 0,
                    "window_start": window_start,
                    "window_end": window_end,
                    "created_at": now,
                    "updated_at": now,
                },
                conflict_columns=("client_key", "route_class", "window_start"),
            )
            # The count only moves while under the limit, so racing requests cannot overshoot.
            result = await session.execute(
                update(ClientRateLimitWindow)
                .where(
                    ClientRateLimitWindow.client_key == client_key,
                    ClientRateLimitWindow.route_class == route_class,
                    ClientRateLimitWindow.window_start == window_start,
                    ClientRateLimitWindow.request_count < limits.limit,
                )
                .values(request_count=ClientRateLimitWindow.request_count + 1, updated_at=now)
                .returning(ClientRateLimitWindow.request_count)
                .execution_options(synchronize_session=False)
            )
            new_count = result.scalar_one_or_none()

        if new_count is None:
            return ClientRateLimitDecision(
                allowed=False,
                route_class=route_class,
                limit=limits.limit,
                remaining=0,
                window_end=window_end,
                retry_after_s=max(1, int(math.ceil((window_end - now).total_seconds()))),
            )
        return ClientRateLimitDecision(
            allowed=True,
            route_class=route_class,
            limit=limits.limit,
            remaining=max(limits.limit - int(new_count), 0),
            window_end=window_end,
        )


_client_rate_limiter: ClientRateLimiter | None = None


def client_rate_limiter_dep() -> ClientRateLimiter:
    # Share one limiter per process; tests override this dependency to pin the clock.
    global _client_rate_limiter
    if _client_rate_limiter is None:
        _client_rate_limiter = ClientRateLimiter()
    return _client_rate_limiter


def reset_client_rate_limiter_state() -> None:
    # Drop the cached limiter so tests start from the default clock.
    global _client_rate_limiter
    _client_rate_limiter = None


def _rate_limit_headers(decision: ClientRateLimitDecision) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(int(decision.window_end.timestamp())),
    }


def _throttle_exception(*, decision: ClientRateLimitDecision) -> HTTPException:
    # Construct a stable 429 response with retry hints for the client.
    headers = {"Retry-After": str(decision.retry_after_s), **_rate_limit_headers(decision)}
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "code": "RATE_LIMITED",
            "message": "Too many requests",
            "route_class": decision.route_class,
            "retry_after_s": decision.retry_after_s,
        },
        headers=headers,
    )


def _unavailable_exception() -> HTTPException:
    # Return a stable 503 when the window store is unreachable and fail-closed.
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"code": "RATE_LIMIT_UNAVAILABLE", "message": "Rate limiting unavailable"},
    )


async def enforce_client_rate_limit(
    *,
    request: Request,
    response: Response,
    db: AsyncSession,
    limiter: ClientRateLimiter,
) -> None:
    # Throttle credential routes per client address before any password or token work runs.
    settings = get_settings()
    route_class = route_class_for_path(request.url.path)
    if route_class is None or not settings.auth_rate_limit_enabled:
        return

    client_key = client_key_for_request(request)
    try:
        decision = await limiter.check(
            session=db,
            client_key=client_key,
            route_class=route_class,
            limits=_limits_for_route(route_class),
        )
    except SQLAlchemyError as exc:
        if settings.auth_rate_limit_fail_mode.lower() == "closed":
            raise _unavailable_exception() from exc
        response.headers["X-RateLimit-Status"] = "degraded"
        logger.warning("client_rate_limit_degraded path=%s error=%s", request.url.path, type(exc).__name__)
        return

    if not decision.allowed:
        logger.info(
            "client_rate_limited client=%s route_class=%s retry_after_s=%s",
            client_key,
            route_class,
            decision.retry_after_s,
        )
        raise _throttle_exception(decision=decision)
    response.headers.update(_rate_limit_headers(decision))


async def client_rate_limit_dep(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    limiter: ClientRateLimiter = Depends(client_rate_limiter_dep),
) -> None:
    await enforce_client_rate_limit(request=request, response=response, db=db, limiter=limiter)
