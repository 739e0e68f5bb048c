"""
Redis client for session lookups and saga locks.
Handles connection management, JSON deserialization, and error handling.
"""

import json
import redis.asyncio as redis
from typing import Any, Optional, Union
from datetime import timedelta

from redis.exceptions import RedisError

from profile_sync.core.config import settings
from profile_sync.core.exceptions import StoreUnavailableError
from profile_sync.core.logging import get_logger

logger = get_logger(__name__)

# Delete a key only while it still holds the caller's token
RELEASE_IF_OWNER_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

# Push a key's expiry forward only while it still holds the caller's token
EXTEND_IF_OWNER_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
end
return 0
"""


class RedisClient:
    """Redis client with JSON deserialization support."""

    def __init__(self):
        """Initialize Redis client."""
        self._client: Optional[redis.Redis] = None
        self._connection_pool: Optional[redis.ConnectionPool] = None

    async def connect(self) -> None:
        """Establish connection to Redis server."""
        try:
            redis_uri = settings.REDIS_URI

            self._connection_pool = redis.ConnectionPool.from_url(
                redis_uri,
                decode_responses=True,
                max_connections=20,
                retry_on_timeout=True
            )
            self._client = redis.Redis(connection_pool=self._connection_pool)

            await self._client.ping()
            logger.info(f"Connected to Redis at {redis_uri}")

        except RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Disconnected from Redis")

    async def get(self, key: str) -> Optional[Any]:
        """
        Get a value, decoding JSON when possible.

        Returns:
            Deserialized value, or None if missing or Redis is unreachable
        """
        if not self._client:
            await self.connect()

        try:
            value = await self._client.get(key)
        except RedisError as e:
            logger.error(f"Error getting key {key} from Redis: {e}")
            return None

        if value is None:
            logger.debug(f"Cache miss for key: {key}")
            return None

        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    async def set_if_absent(
        self,
        key: str,
        value: str,
        expire: Optional[Union[int, timedelta]] = None
    ) -> bool:
        """
        Atomically set key only if it does not exist (SET NX EX).

        Returns:
            True if the key was set

        Raises:
            StoreUnavailableError: If Redis fails
        """
        if not self._client:
            await self.connect()

        try:
            return bool(await self._client.set(key, value, ex=expire, nx=True))
        except RedisError as e:
            logger.error(f"Error setting key {key} in Redis: {e}")
            raise StoreUnavailableError("Redis unavailable", {"key": key, "error": str(e)}) from e

    async def delete_if_value(self, key: str, value: str) -> bool:
        """
        Delete key only if it still holds value.

        Returns:
            True if the key was deleted
        """
        if not self._client:
            await self.connect()

        try:
            result = await self._client.eval(RELEASE_IF_OWNER_SCRIPT, 1, key, value)
        except RedisError as e:
            logger.error(f"Error releasing key {key} in Redis: {e}")
            raise StoreUnavailableError("Redis unavailable", {"key": key, "error": str(e)}) from e
        return bool(result)

    async def extend_if_value(self, key: str, value: str, expire_ms: int) -> bool:
        """
        Reset the expiry of key only if it still holds value.

        Returns:
            True if the expiry was reset, False if the key expired or changed hands
        """
        if not self._client:
            await self.connect()

        try:
            result = await self._client.eval(EXTEND_IF_OWNER_SCRIPT, 1, key, value, expire_ms)
        except RedisError as e:
            logger.error(f"Error extending key {key} in Redis: {e}")
            raise StoreUnavailableError("Redis unavailable", {"key": key, "error": str(e)}) from e
        return bool(result)


# Global Redis client instance
redis_client = RedisClient()


async def get_redis_client() -> RedisClient:
    """
    Get Redis client instance.

    Returns:
        RedisClient: Redis client instance
    """
    if not redis_client._client:
        await redis_client.connect()
    return redis_client
