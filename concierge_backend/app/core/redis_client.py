"""
Redis client for the realtime publish channel.

Booking, quote and trip events are published to pub/sub channels scoped by
tenant, request, trip and user.
"""

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from concierge_backend.app.core.config import settings

logger = logging.getLogger(__name__)

redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def ping_redis() -> bool:
    """True when the realtime channel is reachable."""
    try:
        return bool(await redis_client.ping())
    except (RedisError, OSError) as e:
        logger.warning("Redis ping failed: %s", e)
        return False


async def close_redis():
    try:
        await redis_client.aclose()
    except RedisError as e:
        logger.warning("Error closing Redis connection: %s", e)
