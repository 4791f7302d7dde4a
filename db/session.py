from typing import Optional
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from core.config import settings


def _engine_options(url: str) -> dict:
    # SQLite (local runs, tests) has no connection pool to size
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_pre_ping": True,
        "pool_recycle": 3600,
        "pool_size": 20,       # Base connections
        "max_overflow": 10,    # Burst connections
    }


# PostgreSQL driver for async operations is asyncpg
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    **_engine_options(settings.DATABASE_URL),
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


def create_redis():
    """Shared Redis client, or None when REDIS_URL is empty."""
    if not settings.REDIS_URL:
        return None
    return Redis.from_url(settings.REDIS_URL, decode_responses=True)


async def close_redis(redis: Optional[Redis]):
    if redis is not None:
        await redis.aclose()
