"""Async engine and session helpers for the metadata database."""

from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncGenerator, Callable

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from fileportal.core.config import settings

Base = declarative_base()

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


def create_session_factory(engine: AsyncEngine) -> SessionFactory:
    """Return a context-manager factory that commits on success and rolls back on error."""
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    @asynccontextmanager
    async def session_scope() -> AsyncGenerator[AsyncSession, None]:
        async with maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return session_scope


_engine = create_async_engine(settings.DATABASE_URL, echo=False)
get_session = create_session_factory(_engine)


async def init_db(engine: AsyncEngine = _engine) -> None:
    """Create tables if they do not exist."""
    from fileportal.db import models  # noqa: F401 - register tables with Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_db() -> None:
    await _engine.dispose()
