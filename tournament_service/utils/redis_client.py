"""Redis connection for the event streams."""

from redis.asyncio import ConnectionPool, Redis

from tournament_service.config import Settings


async def create_redis(settings: Settings) -> Redis:
    """Create a pooled client and verify the connection."""
    pool = ConnectionPool.from_url(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout,
        retry_on_timeout=True,
        encoding="utf-8",
        decode_responses=True,
    )
    client = Redis(connection_pool=pool)

    # Test connection
    await client.ping()
    return client


async def close_redis(client: Redis) -> None:
    """Close Redis connection and pool."""
    await client.aclose()
    await client.connection_pool.disconnect()
