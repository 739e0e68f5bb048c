"""
Cache infrastructure module.
Provides the Redis client and the per-identity saga locks built on it.
"""

from .redis_client import RedisClient, redis_client, get_redis_client
from .saga_lock import InProcessSagaLock, RedisSagaLock, SagaLock, get_saga_lock

__all__ = [
    "RedisClient",
    "redis_client",
    "get_redis_client",
    "InProcessSagaLock",
    "RedisSagaLock",
    "SagaLock",
    "get_saga_lock",
]
