"""
Async SQLAlchemy engine / session factory construction.
"""

from __future__ import annotations

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from connectors.exceptions import ConfigurationError
from database.models import Base

SUPPORTED_BACKENDS = ("postgresql", "sqlite")


def build_engine(database_url: str, *, echo: bool = False, timeout: float = 30.0) -> AsyncEngine:
    """
    Create the async engine.

    ``timeout`` bounds waiting for a pooled connection and, on PostgreSQL,
    connecting and every statement, so a hung database surfaces as an
    error instead of stalling the request.
    """
    backend = make_url(database_url).get_backend_name()
    if backend not in SUPPORTED_BACKENDS:
        raise ConfigurationError(
            f"Unsupported DATABASE_URL backend '{backend}' (expected one of: {', '.join(SUPPORTED_BACKENDS)})"
        )

    kwargs = {"echo": echo}
    if backend == "sqlite":
        kwargs["connect_args"] = {"timeout": timeout}
    else:
        kwargs.update(
            pool_size=10,
            max_overflow=20,
            pool_recycle=3600,
            pool_timeout=timeout,
            connect_args={"timeout": timeout, "command_timeout": timeout},
        )
    return create_async_engine(database_url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create all tables (dev / tests; production uses managed migrations)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
