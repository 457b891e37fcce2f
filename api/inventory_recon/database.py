# inventory_recon/database.py
"""
Store access for Inventory Recon.

SQLAlchemy 2.0 async: asyncpg against PostgreSQL in production, aiosqlite
for local runs and tests (pick with DATABASE_URL).
"""
from __future__ import annotations
import functools
import logging
from typing import Any, AsyncGenerator, AsyncIterator, Awaitable, Callable, Optional, TypeVar
from contextlib import asynccontextmanager

from sqlalchemy import BigInteger, Integer, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from inventory_recon.errors import StoreFailure
from inventory_recon.settings import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


# ============================================================================
# Engine / sessions
# ============================================================================

_engine: AsyncEngine | None = None
_sessions: async_sessionmaker[AsyncSession] | None = None


def get_database_url() -> str:
    if settings.DATABASE_URL:
        return settings.DATABASE_URL
    return (
        f"postgresql+asyncpg://{settings.DB_USER}:{settings.DB_PASSWORD}"
        f"@{settings.DB_HOST}:{settings.DB_PORT}/{settings.DB_NAME}"
    )


def build_engine(url: Optional[str] = None) -> AsyncEngine:
    """Async engine for ``url``; pool sizing only applies to server databases."""
    url = url or get_database_url()
    options = {"echo": settings.DB_ECHO}
    if make_url(url).get_backend_name() != "sqlite":
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
        )
    return create_async_engine(url, **options)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # objects stay readable after commit; flushes are explicit
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create missing tables (local runs and tests; production uses migrations)."""
    import inventory_recon.db_models  # noqa: F401  register mappers

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db(create_tables: bool = False) -> None:
    global _engine, _sessions
    if _engine is not None:
        return

    _engine = build_engine()
    _sessions = build_session_factory(_engine)
    logger.info("Database engine ready (%s)", _engine.url.get_backend_name())
    if create_tables:
        await create_all(_engine)


async def close_db() -> None:
    global _engine, _sessions
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessions = None


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Session that commits on success and rolls back on any error."""
    if _sessions is None:
        await init_db()

    async with _sessions() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: ``db: AsyncSession = Depends(get_session)``."""
    async with session_scope() as session:
        yield session


@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Commit everything done inside the block, or roll all of it back.

    Used by the receiving engine so that transit and inventory updates land
    together:

        async with transaction(db):
            ...  # FOR UPDATE reads, mutations, flush
    """
    try:
        yield session
        await session.commit()
    except BaseException:
        await session.rollback()
        raise


async def check_db_health() -> dict:
    """Round-trip ``SELECT 1``; never raises."""
    try:
        async with session_scope() as db:
            await db.execute(text("SELECT 1"))
        return {"status": "healthy", "backend": _engine.url.get_backend_name()}
    except Exception as e:
        logger.warning("Database health check failed: %s", e)
        return {"status": "unhealthy", "error": str(e)}


# ============================================================================
# Store error mapping
# ============================================================================

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def store_errors(action: str) -> Callable[[F], F]:
    """Re-raise SQLAlchemy errors from the wrapped coroutine as StoreFailure."""

    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            try:
                return await fn(*args, **kwargs)
            except SQLAlchemyError as e:
                logger.error("%s failed: %s", action, e)
                raise StoreFailure(f"Failed to {action}") from e

        return wrapper  # type: ignore[return-value]

    return decorator
