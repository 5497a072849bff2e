from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .settings import get_settings

settings = get_settings()


class Base(DeclarativeBase):
    """Base declarative class for SQLAlchemy models."""


def create_session_factory(database_url: str, **engine_kwargs) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Build an engine + session factory pair.

    Used by the API process and by background contexts (celery worker,
    scheduler) that need their own engine bound to their own event loop.
    """
    engine_kwargs.setdefault("echo", False)
    new_engine = create_async_engine(database_url, future=True, **engine_kwargs)
    factory = async_sessionmaker(new_engine, class_=AsyncSession, expire_on_commit=False)
    return new_engine, factory


engine, AsyncSessionLocal = create_session_factory(settings.async_database_url)


async def get_session() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        yield session
