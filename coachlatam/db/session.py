"""Async database session factories and FastAPI dependencies.

Two engines: the regular one used for user-scoped reads, and a service-role one
used for billing writes that must bypass per-user access rules. Both fall back to
the same URL in local development. Supports PostgreSQL (production) and SQLite.
"""

from collections.abc import AsyncGenerator
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from coachlatam.config import get_settings

settings = get_settings()


def async_url(db_url: str) -> str:
    """Point a plain SQLite URL at the aiosqlite driver; anything else is returned as is."""
    if db_url.startswith("sqlite:///"):
        return "sqlite+aiosqlite:///" + db_url[len("sqlite:///"):]
    return db_url


def _build_engine(db_url: str) -> AsyncEngine:
    db_url = async_url(db_url)
    # SQLite: ensure the data directory exists
    if db_url.startswith("sqlite"):
        db_path = db_url.split(":///", 1)[-1]
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return create_async_engine(db_url, echo=settings.debug, connect_args={"check_same_thread": False})
    return create_async_engine(db_url, echo=settings.debug, pool_pre_ping=True)


engine = _build_engine(settings.database_url)
async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

if settings.effective_service_database_url == settings.database_url:
    service_engine = engine
else:
    service_engine = _build_engine(settings.effective_service_database_url)
service_session_factory = async_sessionmaker(service_engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async database session."""
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_service_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields a service-role session for billing writes."""
    async with service_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def dispose_engines() -> None:
    await engine.dispose()
    if service_engine is not engine:
        await service_engine.dispose()
