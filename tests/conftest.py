"""Shared test fixtures.

Each test gets a fresh SQLite file database (via aiosqlite) with the full
schema and the badge catalog seeded. A file is used instead of :memory:
so that separate sessions can race against the same data.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wellup.database import close_db, create_all, get_session_factory, init_db
from wellup.progress.seed import seed_badges


@pytest_asyncio.fixture
async def db_session(tmp_path) -> AsyncGenerator[AsyncSession, None]:
    """A session on a freshly created, seeded database."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'progress.db'}")
    await create_all()

    async with get_session_factory()() as session:
        await seed_badges(session)
        yield session

    await close_db()


@pytest_asyncio.fixture
async def session_factory(db_session: AsyncSession) -> async_sessionmaker[AsyncSession]:
    """Factory for extra sessions, used to run operations concurrently."""
    return get_session_factory()


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Redis stand-in; assertions go through mock_redis.publish."""
    redis = AsyncMock()
    redis.publish = AsyncMock(return_value=1)
    return redis
