"""
Database Connection and Session Management

Async SQLAlchemy 2.0 engine over the directory, the appointment ledger and
the scheduled-message queue. Every gateway opens its unit of work through
session_scope() so commit/rollback behave the same everywhere.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from app.config import settings
from app.models.database import Base


def _connect_args() -> dict:
    # Server-side now() lands in the institution's zone
    if settings.database_url.startswith("postgresql+asyncpg"):
        return {"server_settings": {"timezone": settings.timezone}}
    return {}


engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    poolclass=NullPool,
    connect_args=_connect_args(),
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def session_scope(
    factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    One unit of work: commit on success, roll back on exception.

    Args:
        factory: Session factory (defaults to the application's)

    Usage:
        async with session_scope() as db:
            student = await db.get(Student, "1001")
    """
    session = (factory or async_session_factory)()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


def get_db_context():
    """Unit of work on the application's database."""
    return session_scope()


async def init_db() -> None:
    """
    Create any missing table.

    Development and bootstrap only; existing tables are never altered.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose the engine. Called during application shutdown."""
    await engine.dispose()


async def check_db_health() -> bool:
    """True if the database answers a trivial query."""
    try:
        async with session_scope() as db:
            await db.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError):
        return False
