from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel, Field


API_VERSION = "v1"

T = TypeVar("T")


class ResponseMeta(BaseModel):
    # Echoed on every body so console logs can be joined to server logs.
    request_id: str
    api_version: str = Field(default=API_VERSION)


class ErrorDetail(BaseModel):
    # Machine-readable code plus the message the console shows verbatim.
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    # Every non-2xx body, including validation and throttling failures.
    error: ErrorDetail
    meta: ResponseMeta


class MessageResponse(BaseModel):
    # The {success, message} shape the console renders for credential flows.
    success: bool
    message: str


def get_request_id(request: Request) -> str:
    # The middleware normally assigns one; handlers invoked outside it mint their own.
    request_id = getattr(request.state, "request_id", None)
    if not request_id:
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
    return request_id


def success_response(*, request: Request, data: Any) -> dict[str, Any]:
    # Routes return this dict; FastAPI validates it against SuccessEnvelope[...].
    return {"data": data, "meta": ResponseMeta(request_id=get_request_id(request)).model_dump()}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    # Omit ``details`` entirely when a failure carries none.
    error = ErrorDetail(code=code, message=message, details=details)
    meta = ResponseMeta(request_id=get_request_id(request))
    return {"error": error.model_dump(exclude_none=True), "meta": meta.model_dump()}
