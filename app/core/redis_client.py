"""Redis connection used by the distributed slot lock."""

import asyncio

import redis
import structlog

from app.config import settings

logger = structlog.get_logger(__name__)

_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """
    Get or create the shared Redis client.

    Lock tokens are compared as bytes by redis-py, so responses are never
    decoded for this client.
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            username=settings.redis_username,
            password=settings.redis_password,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )

    return _redis_client


async def check_redis_connection() -> bool:
    """
    Ping Redis without blocking the event loop.

    Returns:
        True if Redis answered, False otherwise
    """
    try:
        return bool(await asyncio.to_thread(get_redis_client().ping))
    except redis.RedisError as e:
        logger.warning("redis_ping_failed", error=str(e))
        return False


def close_redis_connection() -> None:
    """Close the Redis connection pool."""
    global _redis_client

    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None
