from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from guardian.config import settings


def make_engine(url: str, **kwargs) -> AsyncEngine:
    """Async engine for ``url``.

    In-memory SQLite gets a single shared connection so every session sees
    the same database.
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        if url.rstrip("/").endswith(":memory:") or url.endswith("://"):
            kwargs.setdefault("poolclass", StaticPool)
    else:
        kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(url, echo=False, **kwargs)


def make_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False)


engine = make_engine(settings.DATABASE_URL)
async_session = make_sessionmaker(engine)


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy ORM models."""
    pass


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession] = async_session,
) -> AsyncIterator[AsyncSession]:
    """One unit of work: commit when the block succeeds, roll back otherwise."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency that yields an async database session."""
    async with session_scope() as session:
        yield session
