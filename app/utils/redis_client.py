import redis.asyncio as redis
import json
import logging
from typing import Optional, Any, Dict
from ..config import settings

logger = logging.getLogger(__name__)


class RedisClient:
    """Pub/sub publisher for ride events and user notifications"""

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.redis_url
        self.redis: Optional[redis.Redis] = None

    @property
    def connected(self) -> bool:
        return self.redis is not None

    async def connect(self):
        """Connect to Redis; the client is only kept once it answers a ping"""
        client = redis.from_url(
            self.url,
            encoding="utf-8",
            decode_responses=True,
            retry_on_timeout=True,
            socket_keepalive=True,
            socket_connect_timeout=settings.external_timeout_seconds,
        )
        try:
            await client.ping()
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            await client.close()
            raise
        self.redis = client
        logger.info("Connected to Redis successfully")

    async def disconnect(self):
        if self.redis:
            await self.redis.close()
            self.redis = None
            logger.info("Disconnected from Redis")

    async def publish_event(self, channel: str, event_data: Dict[str, Any]) -> int:
        """Publish a JSON message; returns how many subscribers received it"""
        if not self.connected:
            raise RuntimeError("Redis client is not connected")
        try:
            receivers = await self.redis.publish(channel, json.dumps(event_data, default=str))
            logger.debug(f"Published to {channel} ({receivers} subscribers)")
            return receivers
        except Exception as e:
            logger.error(f"Failed to publish event: {e}")
            raise

    async def health_check(self) -> bool:
        if not self.connected:
            return False
        try:
            await self.redis.ping()
            return True
        except Exception as e:
            logger.error(f"Redis health check failed: {e}")
            return False


# Global Redis client instance
redis_client = RedisClient()
