"""
Async engine and session scopes for the ledger, blacklist and search tables.

All three SQL-backed stores (SqlNotificationStore, SqlSearchStore and the
migration script) share one engine built from `database.url`. A plain
driver URL is upgraded to its async driver:

  postgresql:// | postgres://     → postgresql+asyncpg://
  mysql:// | mysql+pymysql://     → mysql+aiomysql://
  sqlite://                       → sqlite+aiosqlite://

Stores never hold a session between calls. Each store operation opens a
SessionScope, which commits on exit and rolls back on error, so a ledger
status update and its blacklist or search writes are separate units.
Tests build their own scope over a temporary engine with
make_session_scope() and pass it to the store.
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncGenerator, Callable, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)

from config.settings import get_settings
from database.models import Base

logger = structlog.get_logger()

SessionScope = Callable[[], AsyncContextManager[AsyncSession]]

ASYNC_DRIVERS = {
    "postgresql://": "postgresql+asyncpg://",
    "postgres://": "postgresql+asyncpg://",
    "mysql://": "mysql+aiomysql://",
    "mysql+pymysql://": "mysql+aiomysql://",
    "sqlite://": "sqlite+aiosqlite://",
}

# Server databases keep a pool sized for the API plus consumer workers.
SERVER_POOL = {
    "pool_size": 10,
    "max_overflow": 20,
    "pool_timeout": 30,
    "pool_recycle": 1800,
    "pool_pre_ping": True,
}

_engine: Optional[AsyncEngine] = None
_sessions: Optional[async_sessionmaker[AsyncSession]] = None


def to_async_url(db_url: str) -> str:
    for prefix, async_prefix in ASYNC_DRIVERS.items():
        if db_url.startswith(prefix):
            return async_prefix + db_url[len(prefix):]
    return db_url


def redact_url(url: str) -> str:
    """Drop credentials so the URL can be logged."""
    return url.split("@")[-1] if "@" in url else url


def get_engine() -> AsyncEngine:
    """Return the shared engine, creating it from settings on first use."""
    global _engine
    if _engine is None:
        settings = get_settings()
        url = to_async_url(settings.database.url)
        options = {"echo": settings.debug}
        if not url.startswith("sqlite"):
            options.update(SERVER_POOL)
        _engine = create_async_engine(url, **options)
        logger.info("database_engine_created",
                    dialect=_engine.dialect.name,
                    url=redact_url(str(_engine.url)))
    return _engine


def make_session_scope(factory: async_sessionmaker[AsyncSession]) -> SessionScope:
    """Transactional scope over a sessionmaker: commit on success, rollback on error."""

    @asynccontextmanager
    async def scope() -> AsyncGenerator[AsyncSession, None]:
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return scope


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Default scope used by the stores: the shared engine from settings."""
    global _sessions
    if _sessions is None:
        _sessions = async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)
    async with make_session_scope(_sessions)() as session:
        yield session


async def init_db(engine: AsyncEngine = None) -> None:
    """Create the ledger, blacklist and search tables if they are missing."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_initialized",
                dialect=engine.dialect.name,
                tables=sorted(Base.metadata.tables))


async def close_db() -> None:
    global _engine, _sessions
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _sessions = None
    logger.info("database_closed")
