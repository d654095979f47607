from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import HTMLResponse, JSONResponse

from drcadmin.apps.api.errors import register_exception_handlers
from drcadmin.apps.api.response import API_VERSION
from drcadmin.apps.api.routes.api_keys import router as api_keys_router
from drcadmin.apps.api.routes.audit import router as audit_router
from drcadmin.apps.api.routes.auth import router as auth_router
from drcadmin.apps.api.routes.health import router as health_router
from drcadmin.apps.api.routes.public_api import router as public_api_router
from drcadmin.apps.api.routes.sessions import router as sessions_router
from drcadmin.core.config import get_settings
from drcadmin.core.logging import configure_logging


logger = logging.getLogger(__name__)

_PUBLIC_PATHS = {
    f"/{API_VERSION}/health",
    f"/{API_VERSION}/auth/signup",
    f"/{API_VERSION}/auth/signin",
    f"/{API_VERSION}/auth/verify-email",
    f"/{API_VERSION}/auth/resend-verification",
    f"/{API_VERSION}/auth/forgot-password",
    f"/{API_VERSION}/auth/verify-reset-token",
    f"/{API_VERSION}/auth/reset-password",
}


def _security_headers(hsts_max_age_s: int) -> dict[str, str]:
    headers = {
        "X-Frame-Options": "DENY",
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Permissions-Policy": "camera=(), microphone=(), geolocation=(), payment=()",
        "X-XSS-Protection": "1; mode=block",
    }
    if hsts_max_age_s > 0:
        headers["Strict-Transport-Security"] = f"max-age={int(hsts_max_age_s)}; includeSubDomains; preload"
    return headers


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="DRC Admin API", docs_url=None, redoc_url=None, openapi_url=None)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next):  # type: ignore[override]
        # Browser hardening headers on every response; routes may still set their own.
        response = await call_next(request)
        if settings.security_headers_enabled:
            for header, value in _security_headers(settings.security_hsts_max_age_s).items():
                response.headers.setdefault(header, value)
        return response

    register_exception_handlers(app)

    for router in (
        health_router,
        auth_router,
        sessions_router,
        api_keys_router,
        audit_router,
        public_api_router,
    ):
        app.include_router(router, prefix=f"/{API_VERSION}")

    @app.get(f"/{API_VERSION}/openapi.json", include_in_schema=False)
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get(f"/{API_VERSION}/docs", include_in_schema=False)
    async def v1_docs() -> HTMLResponse:
        return get_swagger_ui_html(openapi_url=f"/{API_VERSION}/openapi.json", title=f"{settings.app_name} API v1")

    def custom_openapi() -> dict:
        # Session-gated routes accept the console token as a bearer credential.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title="DRC Admin API", version=API_VERSION, routes=app.routes)
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        security_schemes["ApiKeyAuth"] = {"type": "apiKey", "in": "header", "name": "X-API-Key"}
        for path, operations in schema.get("paths", {}).items():
            if path in _PUBLIC_PATHS:
                continue
            scheme = "ApiKeyAuth" if path.startswith(f"/{API_VERSION}/apis/") else "BearerAuth"
            for operation in operations.values():
                operation.setdefault("security", [{scheme: []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi  # type: ignore[method-assign]

    return app


app = create_app()
