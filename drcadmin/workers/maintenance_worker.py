from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from drcadmin.core.config import get_settings
from drcadmin.core.logging import configure_logging
from drcadmin.persistence.db import SessionLocal
from drcadmin.services.maintenance import ALL_TASKS, MaintenanceTask, run_maintenance_task


logger = logging.getLogger(__name__)


async def run_task(ctx, task: MaintenanceTask) -> int:
    async with SessionLocal() as session:
        return await run_maintenance_task(session, task)


async def credential_cleanup(ctx) -> dict[str, int]:
    # Run every sweep; one failing task must not starve the others.
    results: dict[str, int] = {}
    for task in ALL_TASKS:
        try:
            results[task] = await run_task(ctx, task)
        except Exception:  # noqa: BLE001 - keep the cron alive while surfacing failures in worker logs
            logger.exception("maintenance_task_failed task=%s", task)
            results[task] = -1
    return results


async def _startup(ctx) -> None:
    configure_logging()


class WorkerSettings:
    # Keep worker settings as class attributes for ARQ CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.maintenance_queue_name
    functions = [run_task]
    cron_jobs = [cron(credential_cleanup, minute={settings.maintenance_cron_minute}, run_at_startup=False)]
    on_startup = _startup
