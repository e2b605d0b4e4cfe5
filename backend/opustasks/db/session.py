"""Database session management."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from opustasks.config import get_settings

settings = get_settings()


def build_engine(database_url: str) -> AsyncEngine:
    """Create an async engine, applying pool options only where the driver pools."""
    if not database_url.startswith("sqlite"):
        return create_async_engine(
            database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_pre_ping=True,
            echo=settings.debug,
        )

    options: dict = {"echo": settings.debug}
    if ":memory:" in database_url or database_url.rstrip("/").endswith("aiosqlite:"):
        # One shared connection, otherwise every checkout sees an empty database
        options.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
    sqlite_engine = create_async_engine(database_url, **options)

    # Let SQLAlchemy emit BEGIN itself so savepoints behave on SQLite
    @event.listens_for(sqlite_engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return sqlite_engine


# Create async engine
engine = build_engine(settings.database_url)

# Create session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def init_db() -> None:
    """Initialize database connection pool."""
    async with engine.begin() as conn:
        # Simple connectivity check
        await conn.execute(text("SELECT 1"))


async def close_db() -> None:
    """Close database connection pool."""
    await engine.dispose()


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session for dependency injection."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# Type alias for dependency injection
DBSession = Annotated[AsyncSession, Depends(get_db_session)]
