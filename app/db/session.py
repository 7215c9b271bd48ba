from typing import Any, AsyncIterator, Dict

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.core.config import settings


def engine_options(database_url: str) -> Dict[str, Any]:
    """
    Pool settings for the configured backend.

    Server databases get pool_pre_ping (drop connections closed while idle) and
    pool_recycle (retire connections after 5 minutes). SQLite files have no server
    side to time out, so they take the defaults.
    """
    if database_url.startswith("sqlite"):
        return {"echo": False}
    return {"echo": False, "pool_pre_ping": True, "pool_recycle": 300}


engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))

# expire_on_commit=False: services build responses from ORM objects after committing
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncIterator[AsyncSession]:
    """One session per request; anything left uncommitted is rolled back on close."""
    async with AsyncSessionLocal() as session:
        yield session
