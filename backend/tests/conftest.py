"""
Shared fixtures.

The environment is pinned before any ``app`` import so the cached settings
and the module-level engine point at a throwaway SQLite database.
"""
import os
import tempfile
import uuid
from pathlib import Path

_TMP_DIR = Path(tempfile.mkdtemp(prefix="patient-khata-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR / 'api.sqlite3'}"
os.environ["REDIS_URL"] = ""
os.environ["JWT_SECRET"] = "test-secret"
os.environ["RATE_LIMIT_REQUESTS"] = "10000"
os.environ["LOGIN_RATE_LIMIT"] = "1000"

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.db.database import Base
import app.models  # noqa: F401
from app.services.record_store import RecordStore


@pytest_asyncio.fixture
async def session_factory():
    """A private in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def store(session_factory):
    return RecordStore(session_factory)


@pytest.fixture
def unique():
    """Short random suffix for usernames in the shared API database."""
    return lambda prefix: f"{prefix}-{uuid.uuid4().hex[:8]}"
