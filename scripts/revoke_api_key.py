from __future__ import annotations

import argparse
import asyncio
import sys

from sqlalchemy import select

from drcadmin.domain.models import ApiKey
from drcadmin.persistence.db import SessionLocal
from drcadmin.services.auth.api_keys import get_api_key_service


def _build_parser() -> argparse.ArgumentParser:
    # Keep CLI usage minimal to avoid revoking the wrong key.
    parser = argparse.ArgumentParser(description="Revoke an API key by id")
    parser.add_argument("key_id", help="API key id to revoke")
    return parser


async def _revoke_key(key_id: str) -> int:
    # Revocation keeps the row for usage history; the owner is resolved from the key itself.
    async with SessionLocal() as session:
        admin_id = (await session.execute(select(ApiKey.admin_id).where(ApiKey.id == key_id))).scalar_one_or_none()
        if admin_id is None:
            raise ValueError("API key not found")
        result = await get_api_key_service().revoke_api_key(session=session, key_id=key_id, admin_id=admin_id)
        result.unwrap()
    print(f"{result.message}: {key_id}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_revoke_key(args.key_id))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"revoke_api_key failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
