"""
Database connection and session management.

Uses SQLAlchemy async with connection pooling.

Connection Pool Strategy:
- Postgres session mode (port 5432): local connection pool keeps connections open
- Postgres behind a transaction pooler (port 6543): NullPool (external pooler manages connections)
- SQLite (aiosqlite): single shared connection, used for local runs and tests
- Sessions are lightweight wrappers that checkout connections from the pool
- When a session closes, the connection returns to the pool for reuse

Every table here is user-scoped by an explicit user_id column; callers filter
on it in their queries rather than relying on row-level security.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional
from urllib.parse import urlparse

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, AsyncEngine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool, StaticPool

from config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()

# Global singletons - created once, reused until close_db()/configure_engine()
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None
_db_url: str = settings.DATABASE_URL


def _normalize_url(url: str) -> str:
    """Ensure Postgres URLs use the asyncpg driver."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _enable_sqlite_foreign_keys(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def configure_engine(url: str) -> None:
    """
    Point the module at a different database URL.

    The next get_engine() call builds a fresh engine. Call close_db() first
    if an engine for the old URL is still open.
    """
    global _db_url, _engine, _session_factory
    _db_url = url
    _engine = None
    _session_factory = None


def get_engine() -> AsyncEngine:
    """Get the database engine (singleton - created once, reused)."""
    global _engine
    if _engine is None:
        url = _normalize_url(_db_url)

        if _is_sqlite(url):
            # In-memory databases only exist for the lifetime of one connection
            _engine = create_async_engine(
                url,
                echo=False,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
            event.listen(_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
            logger.info("Database engine created for SQLite (%s)", url)
            return _engine

        parsed_url = urlparse(url)
        db_port: int = parsed_url.port or 5432

        # Disable prepared statement cache for pgbouncer compatibility
        connect_args: dict[str, int] = {
            "statement_cache_size": 0,
            "prepared_statement_cache_size": 0,
        }

        if db_port == 6543:
            # Transaction mode: external pooler manages connections
            _engine = create_async_engine(
                url,
                echo=False,
                poolclass=NullPool,
                connect_args=connect_args,
            )
            logger.info("Database engine created with NullPool (transaction mode, port %d)", db_port)
        else:
            _engine = create_async_engine(
                url,
                echo=False,
                pool_size=5,        # Base connections kept warm
                max_overflow=10,    # Up to 15 total under burst load
                pool_recycle=300,   # Recycle connections every 5 min
                pool_pre_ping=True, # Verify connection is alive before checkout
                connect_args=connect_args,
            )
            logger.info(
                "Database engine created with connection pool (session mode, port %d, "
                "pool_size=5, max_overflow=10)",
                db_port,
            )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the async session factory (singleton - created once, reused)."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,  # Don't auto-flush, we control when to commit
        )
        logger.info("Session factory created (will reuse pooled connections)")
    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield an async database session.

    Usage:
        async with get_session() as session:
            result = await session.execute(query)
            await session.commit()  # Explicit commit if needed

    The session is automatically closed when the context exits.
    Any uncommitted changes are rolled back on error.
    """
    factory = get_session_factory()
    session: AsyncSession = factory()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        # This returns the connection to the pool, doesn't close it
        await session.close()


async def init_db() -> None:
    """Create all tables."""
    # Registers every model on Base.metadata
    import models  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """
    Close the database engine and release all pooled connections.
    Call this on application shutdown.
    """
    global _engine, _session_factory
    if _engine is not None:
        pool_status = get_pool_status()
        logger.info(
            "Closing database pool: %s checked_in, %s checked_out",
            pool_status["checked_in"],
            pool_status["checked_out"],
        )
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database engine disposed, all connections closed")


def get_pool_status() -> dict[str, int | str]:
    """Get current connection pool status for monitoring."""
    if _engine is None:
        return {"pool_type": "not_initialized", "pool_size": 0, "checked_in": 0, "checked_out": 0, "overflow": 0}

    pool = _engine.pool
    if isinstance(pool, (NullPool, StaticPool)):
        return {"pool_type": type(pool).__name__, "pool_size": 0, "checked_in": 0, "checked_out": 0, "overflow": 0}

    return {
        "pool_type": type(pool).__name__,
        "pool_size": pool.size(),
        "checked_in": pool.checkedin(),
        "checked_out": pool.checkedout(),
        "overflow": pool.overflow(),
    }
