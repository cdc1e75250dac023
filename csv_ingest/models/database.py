"""
Async SQLAlchemy engine, declarative base and session factory.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from csv_ingest.config import settings


class Base(DeclarativeBase):
    pass


def build_engine(url: Optional[str] = None) -> AsyncEngine:
    """Create an async engine. Pool sizing only applies to server databases."""
    url = url or settings.DATABASE_URL
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.DB_ECHO)
    return create_async_engine(
        url,
        echo=settings.DB_ECHO,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
    )


engine = build_engine()

async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def init_db(target: Optional[AsyncEngine] = None) -> None:
    """Create all tables. Used by tests and local development."""
    from csv_ingest.models import tables  # noqa: F401  registers mappers

    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()


def dialect_insert(session: AsyncSession):
    """The INSERT construct with ON CONFLICT support for the session's database."""
    from sqlalchemy.dialects import postgresql, sqlite

    name = session.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert
    if name == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"no upsert support for dialect {name!r}")
