"""
Async engine, sessions and transaction helpers

PostgreSQL (asyncpg) in deployments, SQLite (aiosqlite) for tests and local
runs. All cross-request coordination happens through conditional UPDATEs,
so nothing here takes explicit locks.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict
import logging

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool

from skypark.config import settings

logger = logging.getLogger(__name__)


def _engine_options() -> Dict[str, Any]:
    if settings.is_testing or settings.DATABASE_URL.startswith("sqlite"):
        # One connection per session so concurrent tests see real contention
        return {"poolclass": NullPool}
    return {
        "poolclass": AsyncAdaptedQueuePool,
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "pool_pre_ping": True,
    }


engine: AsyncEngine = create_async_engine(settings.DATABASE_URL, echo=settings.DB_ECHO, **_engine_options())

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def init_db():
    """Create missing tables"""
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise
    logger.info(f"Database ready ({engine.dialect.name})")


async def close_db():
    await engine.dispose()
    logger.info("Database connections closed")


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Request scoped session. Services own their transaction boundaries;
    anything left uncommitted is rolled back here.
    """
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def dialect_insert(session: AsyncSession, model):
    """INSERT construct that supports on_conflict_do_nothing for the bound dialect"""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


class DatabaseManager:
    """Transaction scopes shared by the services"""

    def __init__(self):
        self.session_factory = async_session

    @asynccontextmanager
    async def transaction(self, session: AsyncSession):
        """
        Commit the session's work on success, roll it back on any exception.

        Earlier reads may already have autobegun a transaction, so this
        wraps commit/rollback instead of session.begin().
        """
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.warning(f"Transaction rolled back: {type(e).__name__}: {e}")
            raise

    @asynccontextmanager
    async def atomic_transaction(self):
        """Fresh session committed as one unit, for work outside a request"""
        async with self.session_factory() as session:
            async with self.transaction(session):
                yield session


db_manager = DatabaseManager()
