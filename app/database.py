"""
Compliance Cloud - Database Configuration

This module handles database connection setup using SQLAlchemy 2.0 async.
"""

from typing import AsyncGenerator, Optional

from sqlalchemy import MetaData
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from app.config import settings


# Naming convention for constraints (helps with migrations)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    metadata = MetaData(naming_convention=convention)


def create_engine_for(url: Optional[str] = None, null_pool: bool = False) -> AsyncEngine:
    """
    Build an async engine.

    Workers pass null_pool=True: each Celery task runs on its own event loop,
    and pooled asyncpg connections cannot cross loops.
    """
    url = url or settings.database_url_async
    if null_pool or url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.debug, poolclass=NullPool)
    return create_async_engine(
        url,
        echo=settings.debug,  # Log SQL queries in debug mode
        pool_pre_ping=True,   # Verify connections before use
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory with the project-wide session options."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Create async engine
engine = create_engine_for()

# Create async session factory
async_session_factory = create_session_factory(engine)


def dialect_insert(session: AsyncSession, table):
    """
    INSERT construct supporting ON CONFLICT for the session's dialect.

    PostgreSQL in production, SQLite in tests; both expose
    on_conflict_do_nothing / on_conflict_do_update with index_elements.
    """
    if session.bind.dialect.name == "sqlite":
        return sqlite_insert(table)
    return pg_insert(table)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database session.
    Use with FastAPI's Depends().
    """
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db():
    """
    Initialize database - create all tables.
    Use this for development/testing only.
    For production, use Alembic migrations.
    """
    import app.models  # noqa: F401  (registers every table on Base.metadata)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Close database connections."""
    await engine.dispose()
