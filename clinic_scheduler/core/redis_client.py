"""Redis client configuration and change event mirroring."""

import json

import redis
import structlog

from clinic_scheduler.config import settings
from clinic_scheduler.store.feed import RawChangeEvent

logger = structlog.get_logger(__name__)

# Global Redis client instance
_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """
    Get or create Redis client instance.

    Returns:
        Redis client instance
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            username=settings.redis_username,
            password=settings.redis_password,
            decode_responses=settings.redis_decode_responses,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )

    return _redis_client


async def check_redis_connection() -> bool:
    """
    Check if Redis connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        client = get_redis_client()
        client.ping()
        return True
    except Exception:
        return False


def close_redis_connection() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None


class RedisEventPublisher:
    """Mirror raw store change events onto Redis pub/sub channels."""

    def __init__(self, redis_client: redis.Redis, channel_prefix: str = "clinic:changes"):
        """Initialize publisher with Redis client and channel prefix."""
        self.redis = redis_client
        self.channel_prefix = channel_prefix

    def channel_for(self, collection: str) -> str:
        """Channel name for a collection."""
        return f"{self.channel_prefix}:{collection}"

    def publish(self, collection: str, event: RawChangeEvent) -> bool:
        """
        Publish an event as JSON.

        Args:
            collection: Collection the change belongs to
            event: Raw change event

        Returns:
            True if published, False otherwise
        """
        try:
            message = json.dumps(event.to_dict(), default=str)
            self.redis.publish(self.channel_for(collection), message)
            return True
        except Exception as e:
            # Fail open: the write has already been committed
            logger.warning("change_event_publish_failed", collection=collection, error=str(e))
            return False
