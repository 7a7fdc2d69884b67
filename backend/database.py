# ============================================================
# database.py
# ============================================================

import logging
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession
from sqlalchemy.orm import sessionmaker

from db_models import Base

logger = logging.getLogger(__name__)


def normalize_database_url(url: str) -> str:
    """Rewrite hosted-Postgres URLs to the asyncpg driver form"""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def build_engine(database_url: str) -> AsyncEngine:
    url = normalize_database_url(database_url)

    if url.startswith("postgresql"):
        return create_async_engine(
            url,
            pool_size=3,
            max_overflow=2,
            echo=False
        )

    return create_async_engine(url, echo=False)


def build_session_factory(engine: AsyncEngine):
    return sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


async def create_tables(engine: AsyncEngine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def run_schema_migrations(engine: AsyncEngine):
    """
    Add the escalation columns to an incidents table created before the
    escalation engine was deployed. Safe to run on every startup.
    """
    if engine.dialect.name != "postgresql":
        return

    async with engine.begin() as conn:
        await conn.execute(text("""
            ALTER TABLE incidents
            ADD COLUMN IF NOT EXISTS escalation_level INTEGER NOT NULL DEFAULT 0,
            ADD COLUMN IF NOT EXISTS escalated BOOLEAN NOT NULL DEFAULT false,
            ADD COLUMN IF NOT EXISTS escalate_at TIMESTAMP NULL,
            ADD COLUMN IF NOT EXISTS escalation_notes TEXT DEFAULT ''
        """))
        await conn.execute(text("""
            CREATE INDEX IF NOT EXISTS ix_incidents_escalate_at
            ON incidents (escalate_at)
        """))
    logger.info("✅ Schema migrations applied (escalation columns)")
