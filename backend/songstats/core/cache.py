from redis.asyncio import Redis
from redis.exceptions import RedisError
from typing import Dict, Optional
import json
import logging
from .config import settings
from ..models.metrics import StatsSnapshot

logger = logging.getLogger(__name__)

class StatsCache:
    """Short-lived copy of per-song metrics, keyed by media id.

    Advisory only: every failure is logged and reported as a miss, so the
    database stays the source of truth. A cache built without a client is
    permanently disabled.
    """

    def __init__(self, redis_client: Optional[Redis], prefix: Optional[str] = None, default_ttl: Optional[int] = None):
        self.redis_client = redis_client
        self.prefix = prefix if prefix is not None else settings.CACHE_KEY_PREFIX
        self.default_ttl = default_ttl or settings.CACHE_TTL_SECONDS

    @property
    def enabled(self) -> bool:
        return self.redis_client is not None

    def key(self, media_id: str) -> str:
        return f"{self.prefix}{media_id}"

    async def get_snapshot(self, media_id: str) -> Optional[StatsSnapshot]:
        """Get cached stats, None on miss"""
        if not self.enabled:
            return None
        try:
            value = await self.redis_client.get(self.key(media_id))
            if value:
                return StatsSnapshot.from_json(json.loads(value))
            return None
        except (RedisError, ValueError) as e:
            logger.error(f"Error getting {media_id} from cache: {str(e)}")
            return None

    async def set_snapshot(
        self, media_id: str, snapshot: StatsSnapshot, ttl: Optional[int] = None, nx: bool = False
    ) -> bool:
        """Set cached stats with expiration.

        With `nx` the entry is only written when none exists, so a read-path
        repopulation never replaces a fresher value written by a sync.
        """
        if not self.enabled:
            return False
        try:
            return bool(await self.redis_client.set(
                self.key(media_id),
                json.dumps(snapshot.to_json()),
                ex=ttl or self.default_ttl,
                nx=nx,
            ))
        except RedisError as e:
            logger.error(f"Error caching stats for {media_id}: {str(e)}")
            return False

    async def ping(self) -> bool:
        if not self.enabled:
            return False
        try:
            return bool(await self.redis_client.ping())
        except RedisError as e:
            logger.error(f"Redis ping failed: {str(e)}")
            return False

    async def get_info(self) -> Dict:
        """Get cache server details"""
        if not self.enabled:
            return {}
        try:
            info = await self.redis_client.info()
            return {
                "version": info.get("redis_version", "unknown"),
                "hits": info.get("keyspace_hits", 0),
                "misses": info.get("keyspace_misses", 0),
                "memory_used": info.get("used_memory_human", "0B"),
            }
        except RedisError as e:
            logger.error(f"Error getting cache info: {str(e)}")
            return {}
