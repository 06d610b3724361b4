from __future__ import annotations

import asyncio
import os
import tempfile

# Point settings at a throwaway SQLite file before any coworkhub module builds the engine.
_DB_DIR = tempfile.mkdtemp(prefix="coworkhub-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DB_DIR}/coworkhub.db")
os.environ.setdefault("AUTH_CACHE_TTL_S", "0")
os.environ.setdefault("AUTH_DEV_BYPASS", "false")

import pytest  # noqa: E402

from coworkhub.core.config import get_settings  # noqa: E402
from coworkhub.domain.models import Base  # noqa: E402
from coworkhub.persistence.db import engine  # noqa: E402


async def _create_schema() -> None:
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    await engine.dispose()


@pytest.fixture(scope="session", autouse=True)
def database_schema() -> None:
    asyncio.run(_create_schema())
    yield


@pytest.fixture(autouse=True)
async def dispose_engine_between_tests() -> None:
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    yield
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> None:
    # Tests that monkeypatch env vars see fresh settings; the next test starts clean.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
