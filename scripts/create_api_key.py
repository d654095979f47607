from __future__ import annotations

import argparse
import asyncio
import sys

from sqlalchemy import select

from drcadmin.domain.models import Admin
from drcadmin.persistence.db import SessionLocal
from drcadmin.services.auth.api_keys import ApiKeySpec, get_api_key_service


def _build_parser() -> argparse.ArgumentParser:
    # Keep CLI options explicit for auditability.
    parser = argparse.ArgumentParser(description="Create an API key for an admin")
    parser.add_argument("--admin-email", required=True, help="Email of the owning admin")
    parser.add_argument("--name", required=True, help="API key name")
    parser.add_argument("--description", default=None, help="Optional description")
    parser.add_argument("--no-read", action="store_true", help="Withhold read access")
    parser.add_argument("--write", action="store_true", help="Grant write access")
    parser.add_argument("--delete", action="store_true", help="Grant delete access")
    parser.add_argument(
        "--endpoints",
        default="*",
        help="Comma-separated allowed endpoints ('*' or paths like /v1/apis/*)",
    )
    parser.add_argument("--rate-limit", type=int, default=None, help="Requests allowed per window")
    parser.add_argument("--rate-limit-period", type=int, default=None, help="Window length in seconds")
    parser.add_argument("--expires-in-days", type=int, default=None, help="Lifetime in days")
    return parser


async def _create_key(args: argparse.Namespace) -> int:
    # Route through the service so validation, caps and audit match the console.
    async with SessionLocal() as session:
        admin = (
            await session.execute(select(Admin).where(Admin.email == args.admin_email.strip().lower()))
        ).scalar_one_or_none()
        if admin is None:
            raise ValueError("Admin not found")

        result = await get_api_key_service().create_api_key(
            session=session,
            admin_id=admin.id,
            spec=ApiKeySpec(
                name=args.name,
                description=args.description,
                can_read=not args.no_read,
                can_write=args.write,
                can_delete=args.delete,
                allowed_endpoints=args.endpoints,
                rate_limit=args.rate_limit,
                rate_limit_period=args.rate_limit_period,
                expires_in_days=args.expires_in_days,
            ),
        )
        issued = result.unwrap()

    print("API key created:")
    print(f"  key_id: {issued.api_key.id}")
    print(f"  key_prefix: {issued.api_key.prefix}")
    print("  api_key: ")
    print(f"    {issued.key}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_create_key(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_api_key failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
