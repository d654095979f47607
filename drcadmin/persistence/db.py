from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Any, AsyncIterator, Sequence

from sqlalchemy import insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from drcadmin.core.config import get_settings


logger = logging.getLogger(__name__)

settings = get_settings()
_engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
# Configure bounded asyncpg pools; SQLite (tests, local dev) keeps driver defaults.
if not settings.database_url.startswith("sqlite"):
    _engine_kwargs["pool_size"] = max(1, int(settings.db_pool_size))
    _engine_kwargs["max_overflow"] = max(0, int(settings.db_max_overflow))
    _engine_kwargs["pool_timeout"] = 30
    _engine_kwargs["pool_recycle"] = 1800
    if settings.db_statement_timeout_ms > 0:
        _engine_kwargs["connect_args"] = {
            "server_settings": {"statement_timeout": str(int(settings.db_statement_timeout_ms))}
        }
engine = create_async_engine(settings.database_url, **_engine_kwargs)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session


def dialect_name(session: AsyncSession) -> str:
    # Resolve the backend for dialect-specific upserts.
    return session.get_bind().dialect.name


async def insert_ignoring_conflict(
    session: AsyncSession,
    model: Any,
    *,
    values: dict[str, Any],
    conflict_columns: Sequence[str],
) -> None:
    """Insert ``values`` unless a row with the same ``conflict_columns`` already exists.

    Postgres and SQLite use ``ON CONFLICT DO NOTHING``; other backends fall back to a
    savepoint that swallows the unique violation.
    """
    dialect = dialect_name(session)
    if dialect == "postgresql":
        stmt = pg_insert(model).values(**values).on_conflict_do_nothing(index_elements=list(conflict_columns))
        await session.execute(stmt)
        return
    if dialect == "sqlite":
        stmt = sqlite_insert(model).values(**values).on_conflict_do_nothing(index_elements=list(conflict_columns))
        await session.execute(stmt)
        return
    try:
        async with session.begin_nested():
            await session.execute(insert(model).values(**values))
    except IntegrityError:
        # A concurrent writer created the row first; the savepoint is already rolled back.
        logger.debug("insert_conflict_ignored table=%s", model.__tablename__)


@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    # Commit the enclosed statements as one unit; any failure rolls all of them back.
    try:
        yield session
        await session.commit()
    except BaseException:
        await session.rollback()
        raise
