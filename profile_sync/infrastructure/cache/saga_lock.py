"""
Per-identity saga locks.
At most one publish/pull/relink/unbind runs per identity; a second attempt fails fast.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Set, Union

from profile_sync.core.config import settings
from profile_sync.core.exceptions import SagaInProgressError, StoreUnavailableError
from profile_sync.core.logging import get_logger
from profile_sync.infrastructure.cache.redis_client import RedisClient, redis_client

logger = get_logger(__name__)


class InProcessSagaLock:
    """Lock held in this process only. Suitable for a single worker and for tests."""

    def __init__(self):
        self._held: Set[str] = set()

    def is_held(self, identity_id: str) -> bool:
        return identity_id in self._held

    @asynccontextmanager
    async def hold(self, identity_id: str) -> AsyncIterator[None]:
        if identity_id in self._held:
            raise SagaInProgressError(identity_id)
        self._held.add(identity_id)
        try:
            yield
        finally:
            self._held.discard(identity_id)


class RedisSagaLock:
    """
    Lock shared by all workers through Redis SET NX EX with token-checked release.

    While held, a heartbeat pushes the key's expiry forward every refresh_interval
    seconds (a third of the TTL by default), so a saga parked on a signature keeps
    its lock. The TTL only matters when the holding worker dies.
    """

    def __init__(
        self,
        client: Optional[RedisClient] = None,
        ttl_seconds: Optional[int] = None,
        key_prefix: str = "profile_sync:saga:",
        refresh_interval: Optional[float] = None,
    ):
        self.client = client or redis_client
        self.ttl_seconds = ttl_seconds or settings.SAGA_LOCK_TTL_SECONDS
        self.key_prefix = key_prefix
        self.refresh_interval = refresh_interval or self.ttl_seconds / 3

    async def _keep_alive(self, identity_id: str, key: str, token: str) -> None:
        expire_ms = int(self.ttl_seconds * 1000)
        while True:
            await asyncio.sleep(self.refresh_interval)
            try:
                extended = await self.client.extend_if_value(key, token, expire_ms)
            except StoreUnavailableError as e:
                logger.warning(f"Could not refresh saga lock for {identity_id}: {e.message}")
                continue
            if not extended:
                logger.error(f"Saga lock for {identity_id} was lost while held")
                return

    @asynccontextmanager
    async def hold(self, identity_id: str) -> AsyncIterator[None]:
        key = f"{self.key_prefix}{identity_id}"
        token = uuid.uuid4().hex

        if not await self.client.set_if_absent(key, token, expire=self.ttl_seconds):
            raise SagaInProgressError(identity_id)
        heartbeat = asyncio.create_task(self._keep_alive(identity_id, key, token))
        try:
            yield
        finally:
            heartbeat.cancel()
            await asyncio.gather(heartbeat, return_exceptions=True)
            if not await self.client.delete_if_value(key, token):
                logger.warning(f"Saga lock for {identity_id} expired before release")


SagaLock = Union[InProcessSagaLock, RedisSagaLock]


def get_saga_lock() -> SagaLock:
    """Build the saga lock selected by SAGA_LOCK_BACKEND."""
    if settings.SAGA_LOCK_BACKEND == "redis":
        return RedisSagaLock()
    return InProcessSagaLock()
