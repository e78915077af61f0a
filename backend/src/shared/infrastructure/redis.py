from redis.asyncio import ConnectionPool, Redis

from shared.config import settings

_pool: ConnectionPool | None = None


def get_redis() -> Redis:
    """Client on the shared pool; the pool is built on first use."""
    global _pool
    if _pool is None:
        _pool = ConnectionPool.from_url(settings.REDIS_URL)
    return Redis(connection_pool=_pool)


async def close_redis() -> None:
    global _pool
    if _pool is not None:
        await _pool.disconnect()
        _pool = None
