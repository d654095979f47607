from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from drcadmin.apps.api.deps import AdminPrincipal, get_current_admin, get_db, session_manager_dep
from drcadmin.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from drcadmin.apps.api.response import MessageResponse, SuccessEnvelope, success_response
from drcadmin.services.auth.sessions import SessionManager


router = APIRouter(prefix="/sessions", tags=["sessions"], responses=DEFAULT_ERROR_RESPONSES)


class SessionListResponse(BaseModel):
    items: list[dict[str, Any]]


class RevokeOthersResponse(MessageResponse):
    revoked: int


@router.get("", response_model=SuccessEnvelope[SessionListResponse])
async def list_sessions(
    request: Request,
    principal: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    sessions: SessionManager = Depends(session_manager_dep),
) -> dict:
    # The current session is flagged explicitly rather than inferred from ordering.
    result = await sessions.list_active_sessions(
        session=db,
        admin_id=principal.admin_id,
        current_session_id=principal.session_id,
    )
    views = result.unwrap()
    return success_response(request=request, data=SessionListResponse(items=[view.to_dict() for view in views]))


@router.delete("/{session_id}", response_model=SuccessEnvelope[MessageResponse])
async def revoke_session(
    session_id: str,
    request: Request,
    principal: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    sessions: SessionManager = Depends(session_manager_dep),
) -> dict:
    result = await sessions.revoke_session(
        session=db,
        session_id=session_id,
        requesting_admin_id=principal.admin_id,
    )
    result.unwrap()
    return success_response(request=request, data=MessageResponse(**result.as_payload()))


@router.post("/revoke-others", response_model=SuccessEnvelope[RevokeOthersResponse])
async def revoke_other_sessions(
    request: Request,
    principal: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    sessions: SessionManager = Depends(session_manager_dep),
) -> dict:
    result = await sessions.revoke_all_other_sessions(
        session=db,
        admin_id=principal.admin_id,
        current_session_id=principal.session_id,
    )
    revoked = result.unwrap()
    return success_response(
        request=request,
        data=RevokeOthersResponse(success=True, message=result.message, revoked=revoked),
    )
