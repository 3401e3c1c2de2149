"""
db/session.py
-------------
Async SQLAlchemy engine and session factory.

  - asyncpg driver in production; pool sized for chat traffic
    (pool_size=10, max_overflow=20).
  - SQLite URLs (local dev / tests) skip the pool arguments, which the
    SQLite pool classes do not accept.
  - expire_on_commit=False so ORM attributes stay readable after commit.

Background jobs (lead capture) must not reuse a request's session; they
open their own through AsyncSessionLocal.
"""

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from supportbot.core.config import settings


def _engine_kwargs(url: str) -> dict:
    kwargs = {"echo": settings.DEBUG, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        kwargs.update(pool_size=10, max_overflow=20, pool_recycle=3600)
    return kwargs


# ── Engine ────────────────────────────────────────────────────────────────────
engine = create_async_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))

# ── Session Factory ───────────────────────────────────────────────────────────
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncIterator[AsyncSession]:
    """
    FastAPI dependency that yields a database session.
    Commits when the request handler returns, rolls back on exceptions.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
