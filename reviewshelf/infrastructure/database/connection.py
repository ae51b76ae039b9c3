"""Database connection and session management."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from reviewshelf.core.config import settings
from reviewshelf.infrastructure.database.models import Base

# Pooled engine, used by the API process (long-lived, one event loop)
engine = create_async_engine(settings.database_url, echo=False, future=True)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

# NullPool engine, used by Celery workers. Each asyncio.run() creates a new
# event loop and pooled connections stay bound to the previous one, so every
# session opens a fresh connection and closes it immediately.
worker_engine = create_async_engine(
    settings.database_url, echo=False, future=True, poolclass=NullPool
)
worker_session_maker = async_sessionmaker(
    worker_engine, class_=AsyncSession, expire_on_commit=False
)


async def init_db() -> None:
    """Initialize database tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_db() -> None:
    await engine.dispose()
