from __future__ import annotations

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

from sqlalchemy.dialects import postgresql, sqlite

from drcadmin.core.config import Settings
from drcadmin.domain.models import UtcDateTime
from drcadmin.services.email import (
    LoggingEmailDispatcher,
    SmtpEmailDispatcher,
    build_email_dispatcher,
    build_reset_link,
    render_password_changed_email,
    render_password_reset_email,
)


def test_utc_datetime_stores_naive_utc_on_sqlite() -> None:
    column_type = UtcDateTime()
    lagos = timezone(timedelta(hours=1))
    value = datetime(2026, 10, 19, 11, 0, tzinfo=lagos)
    stored = column_type.process_bind_param(value, sqlite.dialect())
    assert stored == datetime(2026, 10, 19, 10, 0)
    assert stored.tzinfo is None
    loaded = column_type.process_result_value(stored, sqlite.dialect())
    assert loaded == datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)


def test_utc_datetime_keeps_awareness_on_postgres() -> None:
    column_type = UtcDateTime()
    value = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)
    assert column_type.process_bind_param(value, postgresql.dialect()).tzinfo is not None
    assert column_type.process_bind_param(None, postgresql.dialect()) is None


def test_reset_link_carries_token_and_admin_id() -> None:
    link = build_reset_link(base_url="https://console.drc.ng/", token="abc", admin_id="a1")
    parsed = urlparse(link)
    assert parsed.path == "/auth/reset-password"
    assert parse_qs(parsed.query) == {"token": ["abc"], "userId": ["a1"]}


def test_reset_email_mentions_expiry_and_escapes_name() -> None:
    message = render_password_reset_email(
        to="ada@drc.ng",
        name="<Ada>",
        reset_link="https://console.drc.ng/auth/reset-password?token=abc&userId=a1",
        ttl_minutes=60,
    )
    assert message.subject == "Password Reset Request"
    assert "60 minutes" in message.html
    assert "&lt;Ada&gt;" in message.html
    assert "token=abc" in (message.text or "")


def test_password_changed_email_subject() -> None:
    assert render_password_changed_email(to="a@drc.ng", name="Ada").subject == "Password Changed Successfully"


def test_dispatcher_selection_follows_environment() -> None:
    assert isinstance(build_email_dispatcher(Settings(environment="development")), LoggingEmailDispatcher)
    assert isinstance(build_email_dispatcher(Settings(environment="production")), SmtpEmailDispatcher)
