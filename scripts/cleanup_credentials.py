from __future__ import annotations

import argparse
import asyncio

from drcadmin.persistence.db import SessionLocal
from drcadmin.services.maintenance import ALL_TASKS, run_maintenance_task


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sweep expired credentials and old usage logs")
    parser.add_argument(
        "--task",
        choices=list(ALL_TASKS),
        action="append",
        help="Run only this task (repeatable); defaults to all",
    )
    return parser


async def cleanup(tasks: list[str]) -> None:
    async with SessionLocal() as session:
        for task in tasks:
            affected = await run_maintenance_task(session, task)  # type: ignore[arg-type]
            print(f"{task}={affected}")


if __name__ == "__main__":
    args = _build_parser().parse_args()
    asyncio.run(cleanup(args.task or list(ALL_TASKS)))
