"""
Database session management.

The engine and session factory are built once per process by
grantsignal.core.bootstrap and injected wherever a session is needed;
nothing in this module opens a connection at import time.

Flow:
  1. bootstrap calls create_engine() + create_session_factory().
  2. Callers open a unit of work with session_scope(factory): one
     transaction, committed on clean exit, rolled back on exception.
  3. The connection goes back to the pool when the block ends.

Tenant scoping is explicit: repository queries always filter on
organization_id alongside the primary key.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from grantsignal.core.config import Settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Engine / factory
# ---------------------------------------------------------------------------

def create_engine(settings: Settings) -> AsyncEngine:
    return create_async_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,          # detect stale connections before use
        pool_recycle=3600,           # recycle connections every hour
        echo=settings.db_echo_sql,   # log SQL in dev; disable in prod
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False keeps ORM objects usable after commit
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------

@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a session inside a single transaction.

    Commits automatically when the block exits cleanly (begin() context);
    any exception rolls the transaction back and propagates.
    """
    async with factory() as session:
        async with session.begin():
            yield session


# ---------------------------------------------------------------------------
# Health check helper
# ---------------------------------------------------------------------------

async def check_db_health(engine: AsyncEngine) -> dict:
    """Ping the database; used by /health endpoint."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
