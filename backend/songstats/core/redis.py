from redis.asyncio import Redis
from typing import Optional
from songstats.core.config import settings
import logging

logger = logging.getLogger(__name__)

_redis_client: Redis | None = None

async def get_redis(url: Optional[str] = None) -> Redis:
    """
    Get Redis client instance.
    Creates a new connection if one doesn't exist.
    """
    global _redis_client

    if _redis_client is None:
        url = url or settings.REDIS_URL
        if not url:
            raise RuntimeError("REDIS_URL is not configured")
        client = Redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True
        )
        try:
            # Test connection
            await client.ping()
            logger.info("Successfully connected to Redis")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {str(e)}")
            await client.aclose()
            raise
        _redis_client = client

    return _redis_client

async def close_redis():
    """Close Redis connection if it exists."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
