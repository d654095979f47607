from __future__ import annotations

import os
import tempfile
from uuid import uuid4

# Point the engine at a throwaway SQLite file before any drcadmin module builds it.
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), f'drcadmin-test-{uuid4().hex}.db')}",
)
os.environ.setdefault("ENVIRONMENT", "development")
# Minimum bcrypt cost keeps password tests fast.
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest

from drcadmin.core.config import get_settings
from drcadmin.domain.models import Base
from drcadmin.persistence.db import engine


@pytest.fixture(autouse=True)
async def fresh_schema() -> None:
    # Rebuild every table so tests never observe each other's rows.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> None:
    # Clear settings cache between tests to avoid leaking env overrides.
    yield
    get_settings.cache_clear()
