from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from drcadmin.apps.api.deps import AdminPrincipal, api_key_service_dep, get_current_admin, get_db
from drcadmin.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from drcadmin.apps.api.response import MessageResponse, SuccessEnvelope, success_response
from drcadmin.services.auth.api_keys import ApiKeyPatch, ApiKeyService, ApiKeySpec


router = APIRouter(prefix="/api-keys", tags=["api-keys"], responses=DEFAULT_ERROR_RESPONSES)


class ApiKeyCreateRequest(BaseModel):
    name: str = Field(max_length=128)
    description: str | None = Field(default=None, max_length=1024)
    can_read: bool = True
    can_write: bool = False
    can_delete: bool = False
    can_manage_keys: bool = False
    allowed_endpoints: str = "*"
    rate_limit: int | None = None
    rate_limit_period: int | None = None
    expires_in_days: int | None = None


class ApiKeyUpdateRequest(BaseModel):
    name: str | None = Field(default=None, max_length=128)
    description: str | None = Field(default=None, max_length=1024)
    can_read: bool | None = None
    can_write: bool | None = None
    can_delete: bool | None = None
    can_manage_keys: bool | None = None
    allowed_endpoints: str | None = None
    rate_limit: int | None = None
    rate_limit_period: int | None = None
    is_active: bool | None = None


class ApiKeyResponse(BaseModel):
    api_key: dict[str, Any]


class ApiKeySecretResponse(MessageResponse):
    # Plaintext key; shown once.
    key: str
    api_key: dict[str, Any]


class ApiKeyListResponse(BaseModel):
    items: list[dict[str, Any]]


class ApiKeyUsageResponse(BaseModel):
    timeframe: str
    total_requests: int
    successful_requests: int
    failed_requests: int
    average_response_time_ms: float | None


@router.get("", response_model=SuccessEnvelope[ApiKeyListResponse])
async def list_api_keys(
    request: Request,
    principal: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    api_keys: ApiKeyService = Depends(api_key_service_dep),
) -> dict:
    views = (await api_keys.list_api_keys(session=db, admin_id=principal.admin_id)).unwrap()
    return success_response(request=request, data=ApiKeyListResponse(items=[view.to_dict() for view in views]))


@router.post("", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[ApiKeySecretResponse])
async def create_api_key(
    payload: ApiKeyCreateRequest,
    request: Request,
    principal: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    api_keys: ApiKeyService = Depends(api_key_service_dep),
) -> dict:
    result = await api_keys.create_api_key(
        session=db,
        admin_id=principal.admin_id,
        spec=ApiKeySpec(**payload.model_dump()),
    )
    issued = result.unwrap()
    data = ApiKeySecretResponse(success=True, message=result.message, key=issued.key, api_key=issued.api_key.to_dict())
    return success_response(request=request, data=data)


@router.get("/{key_id}", response_model=SuccessEnvelope[ApiKeyResponse])
async def get_api_key(
    key_id: str,
    request: Request,
    principal: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    api_keys: ApiKeyService = Depends(api_key_service_dep),
) -> dict:
    view = (await api_keys.get_api_key(session=db, key_id=key_id, admin_id=principal.admin_id)).unwrap()
    return success_response(request=request, data=ApiKeyResponse(api_key=view.to_dict()))


@router.patch("/{key_id}", response_model=SuccessEnvelope[ApiKeyResponse])
async def update_api_key(
    key_id: str,
    payload: ApiKeyUpdateRequest,
    request: Request,
    principal: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    api_keys: ApiKeyService = Depends(api_key_service_dep),
) -> dict:
    result = await api_keys.update_api_key(
        session=db,
        key_id=key_id,
        admin_id=principal.admin_id,
        patch=ApiKeyPatch(**payload.model_dump()),
    )
    view = result.unwrap()
    return success_response(request=request, data=ApiKeyResponse(api_key=view.to_dict()))


@router.delete("/{key_id}", response_model=SuccessEnvelope[MessageResponse])
async def revoke_api_key(
    key_id: str,
    request: Request,
    principal: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    api_keys: ApiKeyService = Depends(api_key_service_dep),
) -> dict:
    result = await api_keys.revoke_api_key(session=db, key_id=key_id, admin_id=principal.admin_id)
    result.unwrap()
    return success_response(request=request, data=MessageResponse(**result.as_payload()))


@router.post("/{key_id}/regenerate", response_model=SuccessEnvelope[ApiKeySecretResponse])
async def regenerate_api_key(
    key_id: str,
    request: Request,
    principal: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    api_keys: ApiKeyService = Depends(api_key_service_dep),
) -> dict:
    result = await api_keys.regenerate_api_key(session=db, key_id=key_id, admin_id=principal.admin_id)
    issued = result.unwrap()
    data = ApiKeySecretResponse(success=True, message=result.message, key=issued.key, api_key=issued.api_key.to_dict())
    return success_response(request=request, data=data)


@router.get("/{key_id}/usage", response_model=SuccessEnvelope[ApiKeyUsageResponse])
async def api_key_usage(
    key_id: str,
    request: Request,
    timeframe: Literal["hour", "day", "week", "month"] = Query(default="day"),
    principal: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    api_keys: ApiKeyService = Depends(api_key_service_dep),
) -> dict:
    usage = (
        await api_keys.get_api_key_usage(
            session=db,
            key_id=key_id,
            admin_id=principal.admin_id,
            timeframe=timeframe,
        )
    ).unwrap()
    data = ApiKeyUsageResponse(
        timeframe=usage.timeframe,
        total_requests=usage.total_requests,
        successful_requests=usage.successful_requests,
        failed_requests=usage.failed_requests,
        average_response_time_ms=usage.average_response_time_ms,
    )
    return success_response(request=request, data=data)
