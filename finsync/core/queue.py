from arq.connections import ArqRedis, RedisSettings, create_pool

from finsync.config import get_config


def get_redis_settings(redis_url: str | None = None) -> RedisSettings:
    """Get Redis settings from configuration."""
    return RedisSettings.from_dsn(redis_url or get_config().sync.redis_url)


async def get_queue(redis_url: str | None = None) -> ArqRedis:
    """Create a connection pool to the Redis queue."""
    return await create_pool(get_redis_settings(redis_url))
