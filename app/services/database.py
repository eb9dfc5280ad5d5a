"""Async database engine and session management.

PostgreSQL (asyncpg) in deployment; SQLite (aiosqlite) for local
development and tests.
"""

import logging
from typing import Any, AsyncGenerator, Dict

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import settings
from app.models.base import Base

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    # SQLite ignores ON DELETE CASCADE unless asked
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: str, echo: bool = False, **kwargs: Any) -> AsyncEngine:
    """Create an async engine with pooling suited to the backend.

    Args:
        url: Async SQLAlchemy URL.
        echo: Log emitted SQL.
        **kwargs: Extra ``create_async_engine`` arguments.

    Returns:
        Configured AsyncEngine.
    """
    options: Dict[str, Any] = {"echo": echo}
    is_sqlite = make_url(url).get_backend_name() == "sqlite"
    if not is_sqlite and "poolclass" not in kwargs:
        options.update(pool_pre_ping=True, pool_size=5, max_overflow=10)
    options.update(kwargs)

    async_engine = create_async_engine(url, **options)
    if is_sqlite:
        event.listen(async_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return async_engine


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(settings.SQLALCHEMY_DATABASE_URI, echo=settings.DEBUG)
AsyncSessionLocal = build_session_factory(engine)


async def create_tables(bind: AsyncEngine = engine) -> None:
    """Create any missing tables (``DB_AUTO_CREATE``; use Alembic otherwise)."""
    # Register models on the metadata
    import app.models.tree  # noqa: F401
    import app.models.user  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Provide an async database session.

    Services commit explicitly; anything left uncommitted when the
    request fails is rolled back.

    Yields:
        AsyncSession: SQLAlchemy async session for database operations.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
