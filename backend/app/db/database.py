"""
Async SQLAlchemy engine and session factory.

PostgreSQL (asyncpg) is the default backend; SQLite (aiosqlite) URLs are
accepted for local development and tests.  In-memory SQLite shares a single
connection so every session sees the same database.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from app.config import get_settings

settings = get_settings()


def engine_options(url: str) -> dict:
    """Return ``create_async_engine`` keyword arguments suited to *url*."""
    if url.startswith("sqlite"):
        options: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.rstrip("/").endswith(":"):
            options["poolclass"] = StaticPool
        return options
    return {"pool_size": 20, "max_overflow": 10}


engine = create_async_engine(settings.DATABASE_URL, echo=settings.DEBUG, **engine_options(settings.DATABASE_URL))

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
