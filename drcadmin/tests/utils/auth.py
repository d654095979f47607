from __future__ import annotations

from datetime import datetime, timedelta, timezone
import re
from uuid import uuid4

from drcadmin.core.config import Settings
from drcadmin.domain.models import ROLE_ADMIN, Admin
from drcadmin.persistence.db import SessionLocal
from drcadmin.services.auth.accounts import AccountService
from drcadmin.services.auth.api_keys import ApiKeyService
from drcadmin.services.auth.password_reset import PasswordService
from drcadmin.services.auth.passwords import hash_password
from drcadmin.services.auth.sessions import SessionManager
from drcadmin.services.email import EmailMessage


DEFAULT_PASSWORD = "Str0ng!Passw0rd"
_TOKEN_RE = re.compile(r"token=([0-9a-f]{64})")


class Clock:
    """Settable UTC clock injected as a service ``time_provider``."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 10, 19, 10, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def set(self, value: datetime) -> datetime:
        self.current = value
        return self.current


class RecordingEmailDispatcher:
    # Captures outbound mail; ``deliver=False`` simulates a provider outage.
    def __init__(self, *, deliver: bool = True) -> None:
        self.deliver = deliver
        self.messages: list[EmailMessage] = []

    async def send(self, message: EmailMessage) -> bool:
        self.messages.append(message)
        return self.deliver

    def last_token(self) -> str:
        assert self.messages, "no email captured"
        match = _TOKEN_RE.search(self.messages[-1].text or self.messages[-1].html)
        assert match is not None, "email carries no token link"
        return match.group(1)


def _unique_phone() -> str:
    return f"080{uuid4().int % 10**8:08d}"


async def create_test_admin(
    *,
    email: str | None = None,
    phone: str | None = None,
    name: str = "Test Admin",
    password: str = DEFAULT_PASSWORD,
    role: str = ROLE_ADMIN,
    verified: bool = True,
    active: bool = True,
) -> Admin:
    # Provision an admin row directly, bypassing sign-up validation and email.
    admin = Admin(
        email=email or f"admin-{uuid4().hex[:10]}@drc.test",
        phone=phone or _unique_phone(),
        name=name,
        password_hash=await hash_password(password, rounds=4),
        role=role,
        is_active=active,
        is_email_verified=verified,
    )
    async with SessionLocal() as session:
        session.add(admin)
        await session.commit()
    return admin


def build_session_manager(clock: Clock | None = None, **kwargs) -> SessionManager:
    return SessionManager(time_provider=clock, **kwargs)


def build_password_service(
    *,
    clock: Clock | None = None,
    dispatcher: RecordingEmailDispatcher | None = None,
    settings: Settings | None = None,
) -> PasswordService:
    return PasswordService(
        session_manager=SessionManager(time_provider=clock),
        email_dispatcher=dispatcher or RecordingEmailDispatcher(),
        settings=settings,
        time_provider=clock,
    )


def build_account_service(
    *,
    clock: Clock | None = None,
    dispatcher: RecordingEmailDispatcher | None = None,
) -> AccountService:
    return AccountService(
        session_manager=SessionManager(time_provider=clock),
        email_dispatcher=dispatcher or RecordingEmailDispatcher(),
        time_provider=clock,
    )


def build_api_key_service(*, clock: Clock | None = None, settings: Settings | None = None) -> ApiKeyService:
    return ApiKeyService(settings=settings, time_provider=clock)


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
