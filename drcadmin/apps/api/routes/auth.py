from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from drcadmin.apps.api.deps import (
    AdminPrincipal,
    account_service_dep,
    extract_session_token,
    get_current_admin,
    get_db,
    password_service_dep,
    session_context_from_request,
)
from drcadmin.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from drcadmin.apps.api.rate_limit import client_rate_limit_dep
from drcadmin.apps.api.response import MessageResponse, SuccessEnvelope, success_response
from drcadmin.core.config import get_settings
from drcadmin.core.errors import ErrorKind
from drcadmin.services.auth.accounts import AccountService
from drcadmin.services.auth.password_reset import PasswordService


# The shared dependency only throttles the unauthenticated credential routes.
router = APIRouter(
    prefix="/auth",
    tags=["auth"],
    responses=DEFAULT_ERROR_RESPONSES,
    dependencies=[Depends(client_rate_limit_dep)],
)


class SignupRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    phone: str = Field(min_length=1, max_length=32)
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=256)


class SigninRequest(BaseModel):
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=256)


class EmailRequest(BaseModel):
    email: str = Field(min_length=1, max_length=255)


class TokenRequest(BaseModel):
    token: str = Field(min_length=1, max_length=256)


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1, max_length=256)
    new_password: str = Field(min_length=1, max_length=256)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=256)
    new_password: str = Field(min_length=1, max_length=256)


class AccountResponse(MessageResponse):
    admin: dict[str, Any]


class SigninResponse(AccountResponse):
    token: str
    session_id: str
    expires_at: str


class MeResponse(BaseModel):
    admin: dict[str, Any]
    session_id: str


class ResetTokenStatusResponse(BaseModel):
    valid: bool
    message: str
    user_id: str | None = None


@router.post("/signup", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[AccountResponse])
async def signup(
    payload: SignupRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    accounts: AccountService = Depends(account_service_dep),
) -> dict:
    result = await accounts.register_admin(
        session=db,
        name=payload.name,
        phone=payload.phone,
        email=payload.email,
        password=payload.password,
    )
    admin = result.unwrap()
    data = AccountResponse(success=True, message=result.message, admin=admin.to_dict())
    return success_response(request=request, data=data)


@router.post("/signin", response_model=SuccessEnvelope[SigninResponse])
async def signin(
    payload: SigninRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    accounts: AccountService = Depends(account_service_dep),
) -> dict:
    result = await accounts.sign_in(
        session=db,
        email=payload.email,
        password=payload.password,
        context=session_context_from_request(request),
    )
    signed_in = result.unwrap()
    settings = get_settings()
    response.set_cookie(
        key=settings.session_cookie_name,
        value=signed_in.token,
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        path="/",
    )
    data = SigninResponse(
        success=True,
        message=result.message,
        admin=signed_in.admin.to_dict(),
        token=signed_in.token,
        session_id=signed_in.session_id,
        expires_at=signed_in.expires_at.isoformat(),
    )
    return success_response(request=request, data=data)


@router.post("/signout", response_model=SuccessEnvelope[MessageResponse])
async def signout(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    accounts: AccountService = Depends(account_service_dep),
) -> dict:
    result = await accounts.sign_out(session=db, raw_token=extract_session_token(request))
    result.unwrap()
    response.delete_cookie(get_settings().session_cookie_name, path="/")
    return success_response(request=request, data=MessageResponse(**result.as_payload()))


@router.get("/me", response_model=SuccessEnvelope[MeResponse])
async def me(
    request: Request,
    principal: AdminPrincipal = Depends(get_current_admin),
) -> dict:
    admin = {
        "id": principal.admin_id,
        "email": principal.email,
        "name": principal.name,
        "role": principal.role,
    }
    return success_response(request=request, data=MeResponse(admin=admin, session_id=principal.session_id))


@router.post("/verify-email", response_model=SuccessEnvelope[AccountResponse])
async def verify_email(
    payload: TokenRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    accounts: AccountService = Depends(account_service_dep),
) -> dict:
    result = await accounts.verify_email(session=db, token=payload.token)
    admin = result.unwrap()
    return success_response(
        request=request,
        data=AccountResponse(success=True, message=result.message, admin=admin.to_dict()),
    )


@router.post("/resend-verification", response_model=SuccessEnvelope[MessageResponse])
async def resend_verification(
    payload: EmailRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    accounts: AccountService = Depends(account_service_dep),
) -> dict:
    result = await accounts.resend_verification(session=db, email=payload.email)
    result.unwrap()
    return success_response(request=request, data=MessageResponse(**result.as_payload()))


@router.post("/forgot-password", response_model=SuccessEnvelope[MessageResponse])
async def forgot_password(
    payload: EmailRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    passwords: PasswordService = Depends(password_service_dep),
) -> dict:
    result = await passwords.request_password_reset(session=db, email=payload.email)
    result.unwrap()
    return success_response(request=request, data=MessageResponse(**result.as_payload()))


@router.post("/verify-reset-token", response_model=SuccessEnvelope[ResetTokenStatusResponse])
async def verify_reset_token(
    payload: TokenRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    passwords: PasswordService = Depends(password_service_dep),
) -> dict:
    result = await passwords.verify_reset_token(session=db, token=payload.token)
    if not result.ok and result.kind == ErrorKind.SERVICE_UNAVAILABLE:
        result.unwrap()
    data = ResetTokenStatusResponse(valid=result.ok, message=result.message, user_id=result.value)
    return success_response(request=request, data=data)


@router.post("/reset-password", response_model=SuccessEnvelope[MessageResponse])
async def reset_password(
    payload: ResetPasswordRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    passwords: PasswordService = Depends(password_service_dep),
) -> dict:
    result = await passwords.reset_password_with_token(
        session=db,
        token=payload.token,
        new_password=payload.new_password,
    )
    result.unwrap()
    return success_response(request=request, data=MessageResponse(**result.as_payload()))


@router.post("/change-password", response_model=SuccessEnvelope[MessageResponse])
async def change_password(
    payload: ChangePasswordRequest,
    request: Request,
    response: Response,
    principal: AdminPrincipal = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    passwords: PasswordService = Depends(password_service_dep),
) -> dict:
    result = await passwords.change_password(
        session=db,
        admin_id=principal.admin_id,
        current_password=payload.current_password,
        new_password=payload.new_password,
        current_session_id=principal.session_id,
    )
    result.unwrap()
    settings = get_settings()
    if settings.change_password_revoke_current_session:
        # The caller's session was revoked with the rest; drop the dead cookie too.
        response.delete_cookie(settings.session_cookie_name, path="/")
    return success_response(request=request, data=MessageResponse(**result.as_payload()))
