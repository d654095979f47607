from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from drcadmin.apps.api.response import SuccessEnvelope, success_response


router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request) -> dict:
    return success_response(request=request, data=HealthResponse(status="ok"))
