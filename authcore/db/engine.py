"""Async SQLAlchemy engine and session management."""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from authcore.core.settings import DatabaseSettings


def create_engine_from_settings(db: DatabaseSettings) -> AsyncEngine:
    """Build the async engine; pool options only apply to server databases."""
    url = db.async_url
    if url.startswith("sqlite"):
        return create_async_engine(url)
    return create_async_engine(
        url,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Stores hand ORM rows back after commit, so nothing may expire."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


class _EngineHolder:
    """Lazy singleton for the async session factory."""

    engine: AsyncEngine | None = None
    factory: async_sessionmaker[AsyncSession] | None = None


_holder = _EngineHolder()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Lazily create the process-wide async session factory."""
    if _holder.factory is None:
        _holder.engine = create_engine_from_settings(DatabaseSettings())
        _holder.factory = create_session_factory(_holder.engine)
    return _holder.factory


async def dispose_engine() -> None:
    if _holder.engine is not None:
        await _holder.engine.dispose()
    _holder.engine = None
    _holder.factory = None

