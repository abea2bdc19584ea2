"""Declarative base plus the process-wide async engine and session factory."""
from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import MetaData
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

# Constraint names in alembic/versions depend on this convention.
NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)


class Base(DeclarativeBase):
    metadata = metadata


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_options(database_url: str, overrides: dict[str, Any]) -> dict[str, Any]:
    """Pool settings for server databases; SQLite keeps SQLAlchemy's defaults."""

    options: dict[str, Any] = {}
    if make_url(database_url).get_backend_name() != "sqlite":
        options.update(pool_pre_ping=True, pool_recycle=1800)
    options.update(overrides)
    return options


def init_engine(database_url: str, **kwargs: Any) -> AsyncEngine:
    """Create the engine and session factory, or return the existing engine.

    Raises ``RuntimeError`` when an engine for a different database is
    already active; call :func:`dispose_engine` first.
    """

    global _engine, _session_factory

    if _engine is not None:
        if _engine.url != make_url(database_url):
            raise RuntimeError("Database engine is already initialised for another URL")
        return _engine

    _engine = create_async_engine(database_url, **_engine_options(database_url, kwargs))
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("Database engine has not been initialised")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("Database session factory has not been initialised")
    return _session_factory


def create_session(**kwargs: Any) -> AsyncSession:
    return get_session_factory()(**kwargs)


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Session for scripts and background work. Uncommitted changes are rolled back on exit."""

    session = create_session()
    try:
        yield session
    except BaseException:
        await session.rollback()
        raise
    finally:
        await session.close()


async def dispose_engine() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


__all__ = [
    "Base",
    "NAMING_CONVENTION",
    "create_session",
    "dispose_engine",
    "get_engine",
    "get_session_factory",
    "init_engine",
    "metadata",
    "session_scope",
]
