from __future__ import annotations

import argparse
import asyncio
import getpass
import sys
from datetime import datetime, timezone

from sqlalchemy import or_, select

from drcadmin.core.config import get_settings
from drcadmin.domain.models import ROLE_ADMIN, ROLE_SUPER_ADMIN, Admin
from drcadmin.persistence.db import SessionLocal
from drcadmin.services.audit import record_audit_log
from drcadmin.services.auth.accounts import validate_signup_fields
from drcadmin.services.auth.passwords import hash_password, validate_password_strength


def _build_parser() -> argparse.ArgumentParser:
    # Operator bootstrap for the first console admin; bypasses email verification.
    parser = argparse.ArgumentParser(description="Create a verified admin account")
    parser.add_argument("--name", required=True, help="Display name")
    parser.add_argument("--email", required=True, help="Sign-in email address")
    parser.add_argument("--phone", required=True, help="11-digit phone number")
    parser.add_argument(
        "--role",
        choices=[ROLE_ADMIN, ROLE_SUPER_ADMIN],
        default=ROLE_ADMIN,
        help="Console role",
    )
    parser.add_argument(
        "--password",
        default=None,
        help="Password (prompted when omitted so it stays out of shell history)",
    )
    return parser


async def _create_admin(args: argparse.Namespace) -> int:
    name = args.name.strip()
    email = args.email.strip().lower()
    phone = args.phone.strip()
    password = args.password or getpass.getpass("Password: ")

    error = validate_signup_fields(name=name, phone=phone, email=email) or validate_password_strength(password)
    if error:
        raise ValueError(error)

    async with SessionLocal() as session:
        existing = (
            await session.execute(select(Admin.id).where(or_(Admin.email == email, Admin.phone == phone)))
        ).first()
        if existing is not None:
            raise ValueError("An admin with this email or phone number already exists")

        now = datetime.now(timezone.utc)
        admin = Admin(
            name=name,
            email=email,
            phone=phone,
            password_hash=await hash_password(password, rounds=get_settings().bcrypt_rounds),
            role=args.role,
            is_active=True,
            is_email_verified=True,
            created_at=now,
            updated_at=now,
        )
        session.add(admin)
        await session.commit()

        await record_audit_log(
            session=session,
            admin_id=admin.id,
            action="CREATED",
            entity="admin",
            entity_id=admin.id,
            details={"role": admin.role, "source": "create_admin"},
            best_effort=False,
        )

    print("Admin created:")
    print(f"  admin_id: {admin.id}")
    print(f"  email: {admin.email}")
    print(f"  role: {admin.role}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_create_admin(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_admin failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
