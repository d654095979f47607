from __future__ import annotations

import logging
import time
from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, Response, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from drcadmin.core.config import get_settings
from drcadmin.core.errors import ForbiddenError, RateLimitedError
from drcadmin.domain.models import ROLE_ADMIN, ROLE_SUPER_ADMIN
from drcadmin.persistence.db import get_session
from drcadmin.services.audit import get_request_context
from drcadmin.services.auth.accounts import AccountService, get_account_service
from drcadmin.services.auth.api_keys import (
    ApiKeyPrincipal,
    ApiKeyService,
    RateLimitDecision,
    get_api_key_service,
    has_permission,
)
from drcadmin.services.auth.password_reset import PasswordService, get_password_service
from drcadmin.services.auth.sessions import SessionContext, SessionManager, get_session_manager


logger = logging.getLogger(__name__)

ROLE_ORDER: dict[str, int] = {
    ROLE_ADMIN: 1,
    ROLE_SUPER_ADMIN: 2,
}


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def session_manager_dep() -> SessionManager:
    return get_session_manager()


def password_service_dep() -> PasswordService:
    return get_password_service()


def account_service_dep() -> AccountService:
    return get_account_service()


def api_key_service_dep() -> ApiKeyService:
    return get_api_key_service()


class AdminPrincipal(BaseModel):
    # Identity resolved from a validated console session.
    admin_id: str
    email: str
    name: str
    role: str
    session_id: str


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    scheme, _, token = header_value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def extract_session_token(request: Request) -> str | None:
    # Bearer header wins over the console cookie.
    token = _parse_bearer_token(request.headers.get("Authorization"))
    if token:
        return token
    return request.cookies.get(get_settings().session_cookie_name) or None


def session_context_from_request(request: Request) -> SessionContext:
    context = get_request_context(request)
    return SessionContext(user_agent=context["user_agent"], ip_address=context["ip_address"])


async def get_current_admin(
    request: Request,
    db: AsyncSession = Depends(get_db),
    sessions: SessionManager = Depends(session_manager_dep),
) -> AdminPrincipal:
    # Single gate for every console route that is not part of the sign-in/reset flows.
    validation = await sessions.validate_session(session=db, raw_token=extract_session_token(request))
    if validation.unavailable:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "AUTH_UNAVAILABLE", "message": "Authentication backend unavailable"},
        )
    if not validation.is_valid or validation.admin is None or validation.session_id is None:
        logger.info("session_rejected reason=%s path=%s", validation.error, request.url.path)
        raise _auth_error(validation.error or "Unauthorized")
    request.state.session_id = validation.session_id
    admin = validation.admin
    return AdminPrincipal(
        admin_id=admin.id,
        email=admin.email,
        name=admin.name,
        role=admin.role,
        session_id=validation.session_id,
    )


def role_allows(*, role: str, minimum_role: str) -> bool:
    return ROLE_ORDER.get(role, 0) >= ROLE_ORDER.get(minimum_role, 0)


def require_role(minimum_role: str):
    # Dependency factory to enforce role checks at the route level.
    async def _dependency(principal: AdminPrincipal = Depends(get_current_admin)) -> AdminPrincipal:
        if not role_allows(role=principal.role, minimum_role=minimum_role):
            logger.info("role_forbidden admin_id=%s role=%s required=%s", principal.admin_id, principal.role, minimum_role)
            raise ForbiddenError("Insufficient role for this operation")
        return principal

    return _dependency


def extract_api_key(request: Request) -> str | None:
    return request.headers.get("X-API-Key") or _parse_bearer_token(request.headers.get("Authorization"))


async def get_api_key_principal(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    api_keys: ApiKeyService = Depends(api_key_service_dep),
) -> ApiKeyPrincipal:
    # Authenticate, then authorize the endpoint, then meter the window.
    started = time.monotonic()
    auth_result = await api_keys.authenticate(session=db, presented_key=extract_api_key(request))
    principal: ApiKeyPrincipal = auth_result.unwrap()
    endpoint = request.url.path
    context = get_request_context(request)

    async def _log(status_code: int) -> None:
        await api_keys.log_api_usage(
            session=db,
            api_key_id=principal.api_key_id,
            endpoint=endpoint,
            method=request.method,
            status_code=status_code,
            ip_address=context["ip_address"],
            user_agent=context["user_agent"],
            response_time_ms=int((time.monotonic() - started) * 1000),
            request_size=int(request.headers.get("content-length") or 0) or None,
        )

    if not has_permission(principal, endpoint, request.method):
        await _log(status.HTTP_403_FORBIDDEN)
        raise ForbiddenError("API key does not have permission for this endpoint")

    limit_result = await api_keys.check_rate_limit(session=db, api_key_id=principal.api_key_id, endpoint=endpoint)
    decision: RateLimitDecision = limit_result.unwrap()
    reset_epoch = int(decision.window_end.timestamp())
    response.headers["X-RateLimit-Limit"] = str(decision.limit)
    response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    response.headers["X-RateLimit-Reset"] = str(reset_epoch)
    if not decision.allowed:
        await _log(status.HTTP_429_TOO_MANY_REQUESTS)
        raise RateLimitedError(
            "Rate limit exceeded",
            details={
                "limit": decision.limit,
                "remaining": 0,
                "reset": reset_epoch,
                "retry_after_s": decision.retry_after_s(api_keys.now()),
            },
        )
    await _log(status.HTTP_200_OK)
    return principal
