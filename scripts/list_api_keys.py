from __future__ import annotations

import argparse
import asyncio
from datetime import datetime, timedelta, timezone
import sys

from sqlalchemy import select

from drcadmin.domain.models import Admin, ApiKey
from drcadmin.persistence.db import SessionLocal


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _build_parser() -> argparse.ArgumentParser:
    # Keep listing scoped to one admin so operators only see the keys they asked for.
    parser = argparse.ArgumentParser(description="List API keys owned by an admin")
    parser.add_argument("--admin-email", required=True, help="Email of the owning admin")
    parser.add_argument(
        "--inactive-days",
        type=int,
        default=90,
        help="Highlight keys unused for at least this number of days",
    )
    parser.add_argument(
        "--inactive-only",
        action="store_true",
        help="Show only idle, revoked or expired keys",
    )
    return parser


async def _list_keys(args: argparse.Namespace) -> int:
    # Print lifecycle metadata and prefixes; digests and secrets never leave the store.
    async with SessionLocal() as session:
        rows = (
            await session.execute(
                select(ApiKey)
                .join(Admin, ApiKey.admin_id == Admin.id)
                .where(Admin.email == args.admin_email.strip().lower())
                .order_by(ApiKey.created_at.desc())
            )
        ).scalars().all()

    now = _utc_now()
    threshold = timedelta(days=max(1, int(args.inactive_days)))
    print("key_id\tprefix\tname\tcreated_at\tlast_used\texpires_at\trevoked_at\tusable\tidle_days\tusage_count")
    for api_key in rows:
        is_expired = api_key.expires_at is not None and now >= api_key.expires_at
        usable = bool(api_key.is_active) and api_key.revoked_at is None and not is_expired
        anchor = api_key.last_used or api_key.created_at
        idle_days = max(0, int((now - anchor).days))
        if args.inactive_only and usable and timedelta(days=idle_days) < threshold:
            continue
        print(
            f"{api_key.id}\t{api_key.prefix}\t{api_key.name}\t"
            f"{api_key.created_at.isoformat()}\t"
            f"{api_key.last_used.isoformat() if api_key.last_used else ''}\t"
            f"{api_key.expires_at.isoformat() if api_key.expires_at else ''}\t"
            f"{api_key.revoked_at.isoformat() if api_key.revoked_at else ''}\t"
            f"{usable}\t{idle_days}\t{api_key.usage_count}"
        )
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_list_keys(args))
    except Exception as exc:  # noqa: BLE001 - show full operator-facing error context.
        print(f"list_api_keys failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
