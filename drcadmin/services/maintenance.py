from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Literal

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from drcadmin.core.config import get_settings
from drcadmin.domain.models import ClientRateLimitWindow, EmailVerification
from drcadmin.services.auth.api_keys import ApiKeyService
from drcadmin.services.auth.password_reset import get_password_service
from drcadmin.services.auth.sessions import SessionManager


logger = logging.getLogger(__name__)

MaintenanceTask = Literal[
    "cleanup_reset_tokens",
    "cleanup_verification_tokens",
    "cleanup_sessions",
    "prune_api_usage",
    "prune_client_rate_limits",
]


async def cleanup_expired_reset_tokens(session: AsyncSession) -> int:
    # Token validity never depends on this sweep; it only bounds table growth.
    return await get_password_service().cleanup_expired_tokens(session=session)


async def cleanup_expired_verification_tokens(session: AsyncSession) -> int:
    result = await session.execute(
        delete(EmailVerification).where(
            EmailVerification.expires_at < datetime.now(timezone.utc),
            EmailVerification.verified_at.is_(None),
        )
    )
    return result.rowcount or 0


async def cleanup_expired_sessions(session: AsyncSession) -> int:
    return await SessionManager().cleanup_expired_sessions(session=session)


async def prune_api_usage_logs(session: AsyncSession, older_than_days: int | None = None) -> int:
    return await ApiKeyService().prune_api_usage_logs(session=session, older_than_days=older_than_days)


async def prune_client_rate_limits(session: AsyncSession, older_than_hours: int | None = None) -> int:
    # Closed windows never affect a decision again; keep a short tail for incident review.
    hours = older_than_hours if older_than_hours is not None else get_settings().client_rate_limit_retention_hours
    cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
    result = await session.execute(delete(ClientRateLimitWindow).where(ClientRateLimitWindow.window_end < cutoff))
    return result.rowcount or 0


async def run_maintenance_task(session: AsyncSession, task: MaintenanceTask) -> int:
    if task == "cleanup_reset_tokens":
        count = await cleanup_expired_reset_tokens(session)
    elif task == "cleanup_verification_tokens":
        count = await cleanup_expired_verification_tokens(session)
    elif task == "cleanup_sessions":
        count = await cleanup_expired_sessions(session)
    elif task == "prune_api_usage":
        count = await prune_api_usage_logs(session)
    elif task == "prune_client_rate_limits":
        count = await prune_client_rate_limits(session)
    else:
        raise ValueError(f"Unsupported maintenance task: {task}")
    await session.commit()
    logger.info("maintenance_task_completed task=%s affected=%s", task, count)
    return count


ALL_TASKS: tuple[MaintenanceTask, ...] = (
    "cleanup_reset_tokens",
    "cleanup_verification_tokens",
    "cleanup_sessions",
    "prune_api_usage",
    "prune_client_rate_limits",
)
