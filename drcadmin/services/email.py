from __future__ import annotations

import asyncio
from dataclasses import dataclass
from email.message import EmailMessage as MimeMessage
from html import escape
import logging
from typing import Protocol
from urllib.parse import urlencode

import aiosmtplib

from drcadmin.core.config import Settings, get_settings


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str | None = None


class EmailDispatcher(Protocol):
    async def send(self, message: EmailMessage) -> bool:
        """Deliver a rendered message; report failure instead of raising."""
        ...


class SmtpEmailDispatcher:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def _build_mime(self, message: EmailMessage) -> MimeMessage:
        mime = MimeMessage()
        sender = self._settings.email_from_address
        if self._settings.email_from_name:
            sender = f"{self._settings.email_from_name} <{sender}>"
        mime["From"] = sender
        mime["To"] = message.to
        mime["Subject"] = message.subject
        mime.set_content(message.text or "This message requires an HTML capable mail client.")
        mime.add_alternative(message.html, subtype="html")
        return mime

    async def send(self, message: EmailMessage) -> bool:
        settings = self._settings
        try:
            await aiosmtplib.send(
                self._build_mime(message),
                hostname=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_username,
                password=settings.smtp_password,
                use_tls=settings.smtp_use_tls,
                start_tls=settings.smtp_start_tls if not settings.smtp_use_tls else False,
                timeout=settings.smtp_timeout_s,
            )
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as exc:
            logger.warning(
                "email_dispatch_failed subject=%s error=%s",
                message.subject,
                type(exc).__name__,
                exc_info=exc,
            )
            return False
        logger.info("email_dispatched subject=%s", message.subject)
        return True


class LoggingEmailDispatcher:
    """Development dispatcher: logs the message instead of delivering it."""

    async def send(self, message: EmailMessage) -> bool:
        logger.info("email_logged to=%s subject=%s", message.to, message.subject)
        logger.debug("email_logged_body subject=%s body=%s", message.subject, message.text or message.html)
        return True


def build_email_dispatcher(settings: Settings | None = None) -> EmailDispatcher:
    resolved = settings or get_settings()
    if resolved.is_production:
        return SmtpEmailDispatcher(resolved)
    return LoggingEmailDispatcher()


def build_reset_link(*, base_url: str, token: str, admin_id: str) -> str:
    query = urlencode({"token": token, "userId": admin_id})
    return f"{base_url.rstrip('/')}/auth/reset-password?{query}"


def build_verification_link(*, base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/auth/verify-email?{urlencode({'token': token})}"


def _wrap_html(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html><html><body style=\"font-family: Arial, sans-serif; color: #1f2933;\">"
        f"<h2>{escape(title)}</h2>{body}"
        "<p style=\"color: #7b8794; font-size: 12px;\">Dispute Resolution Centers Admin Console</p>"
        "</body></html>"
    )


def render_password_reset_email(*, to: str, name: str, reset_link: str, ttl_minutes: int) -> EmailMessage:
    link = escape(reset_link, quote=True)
    body = (
        f"<p>Hello {escape(name)},</p>"
        "<p>We received a request to reset your password. Use the link below to choose a new one.</p>"
        f"<p><a href=\"{link}\">Reset password</a></p>"
        f"<p>This link expires in {ttl_minutes} minutes. If you did not request a reset, ignore this email.</p>"
    )
    text = (
        f"Hello {name},\n\nReset your password using this link: {reset_link}\n"
        f"The link expires in {ttl_minutes} minutes. If you did not request a reset, ignore this email.\n"
    )
    return EmailMessage(to=to, subject="Password Reset Request", html=_wrap_html("Password Reset Request", body), text=text)


def render_password_changed_email(*, to: str, name: str) -> EmailMessage:
    body = (
        f"<p>Hello {escape(name)},</p>"
        "<p>Your password was changed successfully and all active sessions were signed out.</p>"
        "<p>If you did not make this change, contact a super administrator immediately.</p>"
    )
    text = (
        f"Hello {name},\n\nYour password was changed successfully and all active sessions were signed out.\n"
        "If you did not make this change, contact a super administrator immediately.\n"
    )
    return EmailMessage(
        to=to,
        subject="Password Changed Successfully",
        html=_wrap_html("Password Changed Successfully", body),
        text=text,
    )


def render_verification_email(*, to: str, name: str, verification_link: str, ttl_hours: int) -> EmailMessage:
    link = escape(verification_link, quote=True)
    body = (
        f"<p>Hello {escape(name)},</p>"
        "<p>Confirm your email address to activate your admin account.</p>"
        f"<p><a href=\"{link}\">Verify email</a></p>"
        f"<p>This link expires in {ttl_hours} hours.</p>"
    )
    text = f"Hello {name},\n\nVerify your email address: {verification_link}\nThe link expires in {ttl_hours} hours.\n"
    return EmailMessage(to=to, subject="Verify Your Email Address", html=_wrap_html("Verify Your Email Address", body), text=text)
