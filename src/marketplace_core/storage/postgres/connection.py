"""Async engine and session lifecycle for the marketplace database.

One engine per process, created by ``init_engine`` at startup from the
``[database]`` settings.  Stores either receive a caller's
``AsyncSession`` (to join its transaction) or open a short-lived one
through ``get_session``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from marketplace_core.core.config import DatabaseConfig, mask_url

from .models import Base

logger = logging.getLogger(__name__)

# Process-wide engine; None until init_engine() runs.
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_engine(config: DatabaseConfig, *, use_null_pool: bool = False) -> AsyncEngine:
    """Build an :class:`AsyncEngine` for *config*.

    Args:
        config: Database settings; ``url`` must use ``postgresql+asyncpg://``.
        use_null_pool: Disable pooling.  Meant for one-shot CLI commands
            and tests where connections should not outlive the call.
    """
    pool_kwargs: dict = {"poolclass": NullPool} if use_null_pool else {
        "pool_size": config.pool_size,
        "max_overflow": config.max_overflow,
        "pool_pre_ping": True,
    }
    engine = create_async_engine(config.url, echo=config.echo, **pool_kwargs)
    logger.info("Created async engine for %s", mask_url(config.url))
    return engine


async def init_engine(
    config: DatabaseConfig,
    *,
    create_tables: bool = False,
    use_null_pool: bool = False,
) -> AsyncEngine:
    """Initialise the process-wide engine and session factory.

    ``create_tables`` runs ``CREATE TABLE IF NOT EXISTS`` for the ORM
    models; production schemas come from the alembic migrations.
    """
    global _engine, _session_factory  # noqa: PLW0603

    if _engine is not None:
        await dispose()

    _engine = create_engine(config, use_null_pool=use_null_pool)
    _session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    if create_tables:
        await create_all(_engine)
    return _engine


async def create_all(engine: AsyncEngine | None = None) -> None:
    eng = engine or get_engine()
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Marketplace tables created / verified")


async def dispose() -> None:
    """Release every pooled connection and forget the engine."""
    global _engine, _session_factory  # noqa: PLW0603

    if _engine is not None:
        await _engine.dispose()
        logger.info("Engine disposed")
    _engine = None
    _session_factory = None


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Yield a session that commits on success and rolls back on error.

    Usage::

        async with get_session() as session:
            store = PostgresOutboxStore(session)
            await users.save(user)          # same session
            await bus.bind_outbox(store).publish_all(user.pull_domain_events())

    Raises:
        RuntimeError: Before :func:`init_engine` or after :func:`dispose`.
    """
    if _session_factory is None:
        raise RuntimeError("No session factory; init_engine() must run at startup")

    session = _session_factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("No database engine; init_engine() must run at startup")
    return _engine
