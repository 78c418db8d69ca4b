"""Shared async engine for the deletion service and CLI."""

import threading

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from safe_delete.core.config import settings

_engine: AsyncEngine | None = None
_engine_lock = threading.Lock()


def get_engine() -> AsyncEngine:
    """
    Return the process-wide engine, creating it on first use.

    Deletions open one short unit of work per statement, so there is no
    session factory; every caller shares this engine. In DEBUG the engine
    keeps no pooled connections, so each statement gets a fresh one.

    Returns:
        AsyncEngine: SQLAlchemy async engine for ``settings.DATABASE_URL``
    """
    global _engine  # noqa: PLW0603
    if _engine is None:
        with _engine_lock:
            if _engine is None:
                if settings.DEBUG:
                    _engine = create_async_engine(
                        settings.DATABASE_URL,
                        echo=settings.DATABASE_ECHO,
                        poolclass=NullPool,
                    )
                else:
                    # Concurrent steps of one phase share this pool
                    _engine = create_async_engine(
                        settings.DATABASE_URL,
                        echo=settings.DATABASE_ECHO,
                        pool_size=settings.DATABASE_POOL_SIZE,
                        max_overflow=settings.DATABASE_MAX_OVERFLOW,
                    )
    return _engine


async def dispose_engine() -> None:
    """Dispose the engine and forget it so the next call recreates it."""
    global _engine  # noqa: PLW0603
    with _engine_lock:
        engine, _engine = _engine, None
    if engine is not None:
        await engine.dispose()
