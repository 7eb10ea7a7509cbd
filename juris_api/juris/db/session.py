from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from .config import Settings, get_settings


# PUBLIC_INTERFACE
def create_engine_from_settings(settings: Optional[Settings] = None) -> AsyncEngine:
    """
    Build the process-wide AsyncEngine (and its connection pool).

    The engine is owned by whoever creates it, normally ``TenantDataCore``,
    which disposes it on shutdown.
    """
    settings = settings or get_settings()
    return create_async_engine(
        settings.async_database_url,
        echo=settings.SQL_ECHO,
        pool_pre_ping=True,
        pool_size=settings.POOL_SIZE,
        max_overflow=settings.MAX_OVERFLOW,
        pool_timeout=settings.POOL_TIMEOUT_SECONDS,
    )


# PUBLIC_INTERFACE
@asynccontextmanager
async def public_connection(engine: AsyncEngine) -> AsyncGenerator[AsyncConnection, None]:
    """
    Borrow a pooled connection for work on the shared ``public`` schema
    (tenant registration, seeding). Returned to the pool on every exit path.
    """
    async with engine.connect() as conn:
        yield conn
