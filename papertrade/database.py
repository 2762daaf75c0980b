"""
Ledger storage: the async engine, session factory and schema helpers.

SQLite via aiosqlite by default; set DATABASE_URL to a
``postgresql+asyncpg://`` URL to run against PostgreSQL. Tables are
created from the models on startup, there are no migrations.
"""

from datetime import UTC, datetime

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from papertrade.config import load_settings

# Seconds a SQLite writer waits on a locked database before failing
SQLITE_BUSY_TIMEOUT = 15


def make_engine(url: str, echo: bool = False) -> AsyncEngine:
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo, connect_args={"timeout": SQLITE_BUSY_TIMEOUT})
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


_settings = load_settings()
engine = make_engine(_settings.database_url, echo=_settings.sql_echo)

AsyncSessionLocal = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the form SQLite hands back)."""
    return datetime.now(UTC).replace(tzinfo=None)


async def init_db(bind: AsyncEngine = engine) -> None:
    """Create any missing tables."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def reset_db(bind: AsyncEngine = engine) -> None:
    """Drop every table and create them again, empty."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


async def ping_db(session: AsyncSession) -> None:
    """Round-trip to the database; raises SQLAlchemyError if it is unreachable."""
    await session.execute(text("SELECT 1"))


async def get_session() -> AsyncSession:
    """FastAPI dependency: one session per request."""
    async with AsyncSessionLocal() as session:
        yield session
