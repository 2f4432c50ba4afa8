from typing import Any

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    async_sessionmaker,
    AsyncAttrs,
)
from sqlalchemy.orm import DeclarativeBase

from commrelay.core.config import settings


def engine_options(url: str, echo: bool = False) -> dict[str, Any]:
    """Engine keyword arguments for the given database URL.

    SQLite (used in tests and local runs) has no connection pool to size.
    """
    if url.startswith("sqlite"):
        return {"echo": echo}
    return {
        "echo": echo,
        "pool_size": 20,
        "max_overflow": 30,
        "pool_pre_ping": True,  # Validate connections before use
        "pool_recycle": 3600,  # Recycle connections every hour
    }


ASYNC_SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL

async_engine: AsyncEngine = create_async_engine(
    ASYNC_SQLALCHEMY_DATABASE_URL,
    **engine_options(ASYNC_SQLALCHEMY_DATABASE_URL, echo=settings.DEBUG),
)

AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    autoflush=False,
    expire_on_commit=False,
    autobegin=True,
)


class Base(AsyncAttrs, DeclarativeBase):
    pass


async def init_db(engine: AsyncEngine | None = None) -> None:
    """
    Creates all the tables defined in the metadata.

    Args:
        engine: Engine to create the tables on. Defaults to the application engine.

    Returns:
        None
    """
    # Register models on the metadata before create_all
    import commrelay.core.db.models  # noqa: F401

    async with (engine or async_engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_db() -> None:
    """
    Dispose the application engine and its connection pool.

    Returns:
        None
    """
    await async_engine.dispose()
