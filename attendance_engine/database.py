"""Database engine, declarative base and session helpers.

Request handlers get one session per request through ``get_db``. The
reconciliation batch opens its own short sessions from
``async_session_factory`` so that a failure for one employee never rolls
back the work already committed for another.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from attendance_engine.config import settings

# Deterministic names for constraints declared without one
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.ENVIRONMENT == "development",
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base shared by every tenant-scoped table."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker = async_session_factory,
) -> AsyncIterator[AsyncSession]:
    """Commit on success, roll back on any error."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a transactional session."""
    async with session_scope() as session:
        yield session


def get_session_factory() -> async_sessionmaker:
    return async_session_factory
