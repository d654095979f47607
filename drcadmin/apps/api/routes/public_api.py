from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from drcadmin.apps.api.deps import get_api_key_principal
from drcadmin.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from drcadmin.apps.api.response import SuccessEnvelope, success_response
from drcadmin.services.auth.api_keys import ApiKeyPrincipal


router = APIRouter(prefix="/apis", tags=["public-api"], responses=DEFAULT_ERROR_RESPONSES)


class KeyInfoResponse(BaseModel):
    api_key_id: str
    name: str
    prefix: str
    permissions: dict[str, bool]
    allowed_endpoints: list[str]
    rate_limit: int
    rate_limit_period: int


@router.get("/key-info", response_model=SuccessEnvelope[KeyInfoResponse])
async def key_info(
    request: Request,
    principal: ApiKeyPrincipal = Depends(get_api_key_principal),
) -> dict:
    # Lets integrators confirm which key they are using and its limits.
    data = KeyInfoResponse(
        api_key_id=principal.api_key_id,
        name=principal.name,
        prefix=principal.prefix,
        permissions={
            "read": principal.can_read,
            "write": principal.can_write,
            "delete": principal.can_delete,
            "manage_keys": principal.can_manage_keys,
        },
        allowed_endpoints=[part for part in principal.allowed_endpoints.split(",") if part],
        rate_limit=principal.rate_limit,
        rate_limit_period=principal.rate_limit_period,
    )
    return success_response(request=request, data=data)
