from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from drcadmin.apps.api.deps import AdminPrincipal, get_current_admin, get_db, require_role
from drcadmin.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from drcadmin.apps.api.response import SuccessEnvelope, success_response
from drcadmin.domain.models import ROLE_SUPER_ADMIN
from drcadmin.services.audit import list_activities, list_audit_logs


router = APIRouter(prefix="/audit", tags=["audit"], responses=DEFAULT_ERROR_RESPONSES)


class AuditItemsResponse(BaseModel):
    items: list[dict[str, Any]]


@router.get("/activities", response_model=SuccessEnvelope[AuditItemsResponse])
async def my_activities(
    request: Request,
    limit: int = Query(default=50, ge=1, le=500),
    principal: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = await list_activities(session=db, admin_id=principal.admin_id, limit=limit)
    items = [
        {"id": row.id, "activity": row.activity, "timestamp": row.timestamp.isoformat()}
        for row in rows
    ]
    return success_response(request=request, data=AuditItemsResponse(items=items))


@router.get("/logs", response_model=SuccessEnvelope[AuditItemsResponse])
async def audit_logs(
    request: Request,
    admin_id: str | None = Query(default=None),
    entity: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    _principal: AdminPrincipal = Depends(require_role(ROLE_SUPER_ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = await list_audit_logs(session=db, admin_id=admin_id, entity=entity, limit=limit)
    items = [
        {
            "id": row.id,
            "admin_id": row.admin_id,
            "action": row.action,
            "entity": row.entity,
            "entity_id": row.entity_id,
            "details": row.details,
            "timestamp": row.timestamp.isoformat(),
        }
        for row in rows
    ]
    return success_response(request=request, data=AuditItemsResponse(items=items))
