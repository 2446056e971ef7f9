"""
Redis cache for derived hashtag lists
"""
import redis.asyncio as redis
from redis.exceptions import RedisError
from typing import List, Optional
import json
import logging

from .config import settings

logger = logging.getLogger(__name__)

TOP_HASHTAGS_KEY = "fitspo:hashtags:top"


class RedisCache:
    """
    Caches hashtag aggregates computed from the candidate window.

    Every operation degrades to a cache miss when Redis is disabled or
    unreachable.
    """

    def __init__(self):
        self.client: Optional[redis.Redis] = None

    async def connect(self):
        """Connect to Redis"""
        if not settings.REDIS_ENABLED:
            logger.info("Redis caching is disabled")
            return

        client = redis.Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            password=settings.REDIS_PASSWORD or None,
            decode_responses=True,
        )
        try:
            await client.ping()
        except RedisError as e:
            logger.warning(f"Redis unavailable ({e}), hashtag lists will not be cached")
            await client.close()
            return

        self.client = client
        logger.info(f"Connected to Redis at {settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}")

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.client:
            await self.client.close()
            self.client = None
            logger.info("Disconnected from Redis")

    async def get_top_hashtags(self) -> Optional[List[str]]:
        """Cached top hashtags, None on a miss"""
        if not self.client:
            return None
        try:
            raw = await self.client.get(TOP_HASHTAGS_KEY)
        except RedisError as e:
            logger.error(f"Reading {TOP_HASHTAGS_KEY} failed: {e}")
            return None
        if not raw:
            return None
        try:
            hashtags = json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding unreadable {TOP_HASHTAGS_KEY} entry")
            return None
        return hashtags if isinstance(hashtags, list) else None

    async def set_top_hashtags(self, hashtags: List[str]):
        """Cache top hashtags for CACHE_TTL_TOP_HASHTAGS seconds"""
        if not self.client:
            return
        try:
            await self.client.setex(TOP_HASHTAGS_KEY, settings.CACHE_TTL_TOP_HASHTAGS, json.dumps(hashtags))
        except RedisError as e:
            logger.error(f"Writing {TOP_HASHTAGS_KEY} failed: {e}")

    async def invalidate_top_hashtags(self):
        """Drop cached top hashtags after the post set changes"""
        if not self.client:
            return
        try:
            await self.client.delete(TOP_HASHTAGS_KEY)
        except RedisError as e:
            logger.error(f"Invalidating {TOP_HASHTAGS_KEY} failed: {e}")


# Global cache instance
cache = RedisCache()


async def get_cache() -> RedisCache:
    """Dependency for getting cache instance"""
    return cache
