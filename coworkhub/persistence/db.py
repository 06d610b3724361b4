from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from coworkhub.core.config import get_settings
from coworkhub.core.errors import DatabaseError


settings = get_settings()
_engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
if settings.database_url.startswith("sqlite"):
    # SQLite files are opened per checkout; pooling only adds lock contention in tests.
    _engine_kwargs["poolclass"] = NullPool
else:
    # Configure bounded asyncpg pools for predictable latency under load.
    _engine_kwargs["pool_size"] = max(1, int(settings.api_db_pool_size))
    _engine_kwargs["max_overflow"] = max(0, int(settings.api_db_max_overflow))
    _engine_kwargs["pool_timeout"] = 30
    _engine_kwargs["pool_recycle"] = 1800
    if settings.api_db_statement_timeout_ms > 0:
        _engine_kwargs["connect_args"] = {
            "server_settings": {"statement_timeout": str(int(settings.api_db_statement_timeout_ms))}
        }
engine = create_async_engine(settings.database_url, **_engine_kwargs)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session


async def commit_or_raise(session: AsyncSession, *, context: str) -> None:
    # Convert commit failures into the domain DB error after rolling back.
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise DatabaseError(f"Database error while {context}") from exc
