"""Redis client configuration and utilities."""

import redis.asyncio as redis

from appointment_router.config import Settings


def create_redis_client(settings: Settings) -> redis.Redis:
    """
    Create a Redis client from settings.

    Returns:
        Redis client instance decoding responses to ``str``
    """
    return redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        username=settings.redis_username,
        password=settings.redis_password,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_keepalive=True,
        health_check_interval=30,
    )


async def check_redis_connection(client: redis.Redis) -> bool:
    """
    Check if Redis connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        await client.ping()
        return True
    except redis.RedisError:
        return False
