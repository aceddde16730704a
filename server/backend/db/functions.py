# /backend/db/functions.py

"""
Database engine and session utilities for SQLAlchemy 2.0 (async).

Features
--------
- Async engine (create_async_engine) with robust pool settings.
- Async session factory (sessionmaker) with expire_on_commit=False.
- async context manager `session_scope()` that commits on success and rolls back on error.
- SQLite connections get `PRAGMA foreign_keys=ON` so ownership constraints and
  cascades behave like they do on PostgreSQL.
- Optional table creation on startup (use Alembic in real production).
- Safe handling for database URL → ensures async driver is used.

Nothing is created at import time: the application builds one engine at
startup and disposes it on shutdown.

Usage
-----
engine = build_engine(DATABASE_URL)
factory = build_session_factory(engine)
await setup_db(engine)

async with session_scope(factory) as session:
    ...

await dispose_engine(engine)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from models import Base

logger = logging.getLogger(__name__)

# --------------------------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------------------------

def _to_async_url(url: str) -> str:
    """
    Convert a common sync SQLAlchemy URL to its async variant if needed.
    - Postgres: psycopg2/psycopg → asyncpg/psycopg_async
    - MySQL:    pymysql → aiomysql
    - SQLite:   sqlite → sqlite+aiosqlite
    If the URL already looks async, it is returned unchanged.
    """
    if "+async" in url or "+asyncpg" in url or "+aiomysql" in url or "+aiosqlite" in url:
        return url

    if url.startswith("postgresql+psycopg://"):
        return url.replace("postgresql+psycopg://", "postgresql+psycopg_async://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)

    if url.startswith("mysql+pymysql://"):
        return url.replace("mysql+pymysql://", "mysql+aiomysql://", 1)

    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    # Unknown or already async driver, return as is.
    return url


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# --------------------------------------------------------------------------------------
# Engine & Session Factory
# --------------------------------------------------------------------------------------

_engine_options = {
    "echo": False,          # leave False in prod; rely on structured logging
    "pool_pre_ping": True,  # avoid stale connections
    "pool_recycle": 1800,   # 30 minutes; tune per infra
}


def build_engine(database_url: str, **overrides) -> AsyncEngine:
    """Create the async engine for `database_url` (sync URLs are upgraded to async drivers)."""
    async_url = _to_async_url(database_url)
    engine = create_async_engine(async_url, **{**_engine_options, **overrides})

    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

    logger.debug("Database engine created.", extra={"dialect": engine.dialect.name})
    return engine


def build_session_factory(engine: AsyncEngine) -> sessionmaker[AsyncSession]:
    # expire_on_commit=False ⇒ attributes remain accessible after commit (common for APIs)
    return sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@asynccontextmanager
async def session_scope(factory: sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# --------------------------------------------------------------------------------------
# Setup / Lifecycle
# --------------------------------------------------------------------------------------

async def setup_db(engine: AsyncEngine, create_tables: bool = True) -> None:
    """
    Prepare the database layer. Call once at application startup.

    Creates tables if `create_tables` is truthy.
    (Recommended to use Alembic for real migrations in production.)
    """
    if create_tables:
        async with engine.begin() as conn:
            # Run DDL in sync context safely
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ensured (create_all).")

    logger.info("Database setup complete.")


async def dispose_engine(engine: AsyncEngine) -> None:
    """
    Dispose of the engine and close all pooled connections. Call on graceful shutdown.
    """
    await engine.dispose()
    logger.debug("Database engine disposed.")


__all__ = [
    "build_engine",
    "build_session_factory",
    "session_scope",
    "setup_db",
    "dispose_engine",
]
