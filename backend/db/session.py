"""
Storefront Core Database Session Management

Async SQLAlchemy engine and session factory shared by the API process.
Celery workers open a short-lived engine per task via worker_session().
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from core.config import get_settings

settings = get_settings()


def engine_options(database_url: str) -> dict:
    """Pool sizing only applies to server databases; SQLite uses its own pool."""
    if database_url.startswith("sqlite"):
        return {}
    return {"pool_size": 20, "max_overflow": 10, "pool_pre_ping": True}


engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    **engine_options(settings.database_url),
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@asynccontextmanager
async def worker_session(database_url: str | None = None) -> AsyncIterator[AsyncSession]:
    """Session on a dedicated engine, disposed on exit (one per worker task run)."""
    url = database_url or get_settings().database_url
    task_engine = create_async_engine(url)
    try:
        factory = async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)
        async with factory() as session:
            yield session
    finally:
        await task_engine.dispose()


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy models."""
    pass
