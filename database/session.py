"""
Async engine and transaction scope for the SQL runtime store.

Sync URLs from settings are rewritten to the matching async driver:
  postgresql:// / postgres://  → postgresql+asyncpg
  mysql:// / mysql+pymysql://  → mysql+aiomysql
  sqlite://                    → sqlite+aiosqlite

    await init_db()                       # once at startup
    async with get_db_session() as db:    # one transaction per store call
        await db.execute(...)
    await close_db()                      # at shutdown
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)

from config.settings import DatabaseConfig, get_settings
from database.models import Base

logger = structlog.get_logger()

_ASYNC_DRIVERS = {"postgresql": "asyncpg", "mysql": "aiomysql", "sqlite": "aiosqlite"}
_BACKEND_ALIASES = {"postgres": "postgresql"}

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _to_async_url(db_url: str) -> str:
    """Point a database URL at its async driver. Already-async URLs pass through."""
    url = make_url(db_url)
    backend, _, driver = url.drivername.partition("+")
    backend = _BACKEND_ALIASES.get(backend, backend)
    async_driver = _ASYNC_DRIVERS.get(backend)
    if async_driver is None or driver in _ASYNC_DRIVERS.values():
        return db_url
    return url.set(drivername=f"{backend}+{async_driver}").render_as_string(hide_password=False)


def _redacted(url: Any) -> str:
    return make_url(str(url)).render_as_string(hide_password=True)


def _engine_kwargs(db_url: str, db: DatabaseConfig) -> dict:
    kwargs: dict[str, Any] = {"echo": db.echo or get_settings().debug}
    if make_url(db_url).get_backend_name() == "sqlite":
        # aiosqlite runs the connection on its own thread
        return {**kwargs, "connect_args": {"check_same_thread": False}}
    return {
        **kwargs,
        "pool_size": db.pool_size,
        "max_overflow": db.max_overflow,
        "pool_timeout": db.pool_timeout_s,
        "pool_recycle": db.pool_recycle_s,
        "pool_pre_ping": True,
    }


def get_engine(db_url: Optional[str] = None) -> AsyncEngine:
    """Return the process-wide engine, creating it from `db_url` or settings."""
    global _engine
    db = get_settings().database
    url = _to_async_url(db_url or db.url)

    if _engine is not None:
        if db_url and make_url(url) != _engine.url:
            logger.warning("database_engine_reused",
                           requested=_redacted(url), active=_redacted(_engine.url))
        return _engine

    _engine = create_async_engine(url, **_engine_kwargs(url, db))
    logger.info("database_engine_created", dialect=_engine.dialect.name, url=_redacted(_engine.url))
    return _engine


def _get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)
    return _session_factory


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """One transaction: committed on clean exit, rolled back on any error."""
    async with _get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.debug("db_transaction_rolled_back", error_type=type(e).__name__)
            raise


async def init_db(db_url: Optional[str] = None) -> list[str]:
    """Create missing tables and return the names of all runtime tables."""
    engine = get_engine(db_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    tables = list(Base.metadata.tables.keys())
    logger.info("database_initialized", dialect=engine.dialect.name, tables=tables)
    return tables


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("database_closed")
