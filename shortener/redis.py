import logging
import redis.asyncio as redis
from typing import Optional

logger = logging.getLogger(__name__)

class RedisClient:
    def __init__(self, url: Optional[str] = None):
        self.url = url
        self.client: Optional[redis.Redis] = None

    async def connect(self):
        if not self.url:
            return
        client = redis.from_url(
            self.url,
            encoding="utf-8",
            decode_responses=True
        )
        try:
            await client.ping()
        except (redis.RedisError, OSError) as e:
            # Graceful degradation: run without rate limiting
            logger.warning(f"Redis unavailable at startup, rate limiting disabled: {e}")
            await client.aclose()
            return
        self.client = client

    async def close(self):
        if self.client:
            await self.client.aclose()
            self.client = None

    async def incr_window(self, key: str, window: int) -> Optional[int]:
        """Increment a fixed-window counter; None when Redis is unavailable."""
        if not self.client:
            return None
        try:
            count = await self.client.incr(key)
            if count == 1:
                await self.client.expire(key, window)
            return count
        except redis.RedisError as e:
            logger.error(f"Rate limiter error: {e}")
            return None
