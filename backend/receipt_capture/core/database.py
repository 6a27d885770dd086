"""Database configuration and session management.

This module constructs an asynchronous SQLAlchemy engine and session
factory for the relational half of receipt persistence (receipt headers
and their line items).  The connection string comes from
``settings.DATABASE_URL``; plain ``sqlite://`` and ``postgresql://`` URLs
are upgraded to their async drivers (``aiosqlite`` and ``psycopg``).
"""

from __future__ import annotations

import logging
from typing import Any, AsyncGenerator

from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from receipt_capture.core.config import settings

logger = logging.getLogger(__name__)


def normalise_database_url(url: str) -> str:
    """Return ``url`` with an async driver selected.

    - ``sqlite``           -> ``sqlite+aiosqlite``
    - ``postgres(ql)``, ``postgresql+psycopg2``, ``postgresql+asyncpg``
                            -> ``postgresql+psycopg``
    Anything else is returned unchanged.
    """
    url_obj = make_url(url)
    driver = url_obj.drivername or ""
    if driver == "sqlite":
        url_obj = url_obj.set(drivername="sqlite+aiosqlite")
    elif driver in {"postgresql", "postgres", "postgresql+psycopg2", "postgresql+asyncpg"}:
        url_obj = url_obj.set(drivername="postgresql+psycopg")
    return url_obj.render_as_string(hide_password=False)


def build_engine(url: str | None = None) -> AsyncEngine:
    db_url = normalise_database_url(url or settings.DATABASE_URL)
    engine_kwargs: dict[str, Any] = dict(echo=False, pool_pre_ping=True)
    logger.info("Creating async engine with URL: %s", make_url(db_url).render_as_string(hide_password=True))
    return create_async_engine(db_url, **engine_kwargs)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine()

# Create session factory
AsyncSessionLocal = build_session_factory(engine)

# Declarative base
Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that yields a database session.

    This function is intended for FastAPI dependency injection.  Each
    session is scoped to the request and closed after use.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create the receipt tables if they do not exist yet."""
    async with (bind or engine).begin() as conn:
        # Import all models to ensure metadata is populated
        from receipt_capture.models import tables  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)
