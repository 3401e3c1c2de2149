"""
create_tables.py
----------------
Bootstrap the schema: enable the pgvector extension (PostgreSQL only) and
create every table registered on Base.metadata. Idempotent; existing tables
are left untouched. Schema changes after the first deploy belong in
migrations.

Usage:
    python create_tables.py
"""

import asyncio

from sqlalchemy import text

from supportbot.core.config import settings
from supportbot.core.logging import configure_logging, get_logger
from supportbot.db.session import engine
from supportbot.models import Base  # registers every model on the metadata

logger = get_logger(__name__)


async def create_all_tables() -> None:
    async with engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            logger.info("pgvector extension ready", dimensions=settings.VECTOR_DIMENSIONS)
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
    logger.info("Schema ready", tables=sorted(Base.metadata.tables))


if __name__ == "__main__":
    configure_logging()
    asyncio.run(create_all_tables())
