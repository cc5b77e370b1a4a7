import json
from typing import Optional, Any
from redis import asyncio as aioredis
from app.config import settings


class RedisClient:
    """Redis client wrapper used as the cross-instance event relay."""

    def __init__(self):
        self.redis: Optional[aioredis.Redis] = None

    async def connect(self):
        """Initialize Redis connection."""
        self.redis = await aioredis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
        )

    async def disconnect(self):
        """Close Redis connection."""
        if self.redis:
            await self.redis.close()

    # Pub/Sub for real-time
    async def publish(self, channel: str, message: str) -> int:
        """Publish message to channel."""
        return await self.redis.publish(channel, message)

    async def publish_json(self, channel: str, value: Any) -> int:
        """Serialize and publish JSON to a channel."""
        return await self.publish(channel, json.dumps(value, default=str))

    def pubsub(self):
        """Get pub/sub instance."""
        return self.redis.pubsub()


# Global Redis client instance
redis_client = RedisClient()


async def get_redis() -> RedisClient:
    """Dependency for getting Redis client."""
    return redis_client
