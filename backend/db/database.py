"""SQLAlchemy async engine and session factory setup."""

from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from app.config import Settings, get_settings


def create_db_engine(settings: Optional[Settings] = None, url: Optional[str] = None) -> AsyncEngine:
    """Create and configure an async SQLAlchemy engine.

    SQLite (used for development and tests) gets no pool sizing since
    aiosqlite does not support it.
    """
    settings = settings or get_settings()
    url = url or settings.DATABASE_URL
    kwargs = dict(echo=settings.SQLALCHEMY_ECHO)
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_pre_ping=True,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_recycle=1800,
        )
    return create_async_engine(url, **kwargs)


def create_session_factory(engine: AsyncEngine):
    """Create an async session factory bound to ``engine``."""
    return sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables registered on the declarative base."""
    from db.base import Base
    import db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def worker_session_factory(settings: Optional[Settings] = None):
    """Yield a session factory backed by a fresh engine.

    Celery tasks run each poll in a new event loop; pooled asyncpg
    connections cannot cross loops, so every poll gets its own engine
    and disposes it afterwards.
    """
    engine = create_db_engine(settings)
    try:
        yield create_session_factory(engine)
    finally:
        await engine.dispose()
