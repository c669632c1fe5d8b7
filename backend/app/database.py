"""Database connections for SQLite and PostgreSQL."""

from contextlib import asynccontextmanager
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from app.config import settings


class Base(DeclarativeBase):
    pass


def _engine_options(database_url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": False, "future": True}
    if database_url.startswith("sqlite"):
        # aiosqlite connections are bound to the loop that opened them.
        options["poolclass"] = NullPool
    return options


engine = create_async_engine(
    settings.database_url,
    **_engine_options(settings.database_url),
)


async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


def _import_models() -> None:
    # Registers every table on Base.metadata before create_all.
    import app.models  # noqa: F401


async def init_db() -> None:
    _import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db() -> None:
    _import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@asynccontextmanager
async def lifespan_db():
    await init_db()
    yield
    await engine.dispose()
