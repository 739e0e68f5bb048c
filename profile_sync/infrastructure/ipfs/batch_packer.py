"""
Batch Packer.
Bundles many small payloads into one IPFS directory so a single upload covers
them all, while each item stays fetchable on its own through its patch id.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

from pydantic import BaseModel, Field

from profile_sync.core.config import settings
from profile_sync.core.exceptions import (
    BatchTooLargeError,
    EmptyBatchError,
    ProfileSyncException,
    ValidationError,
)
from profile_sync.core.logging import get_logger
from profile_sync.domain.models.sync import PackResult, PatchRef
from profile_sync.infrastructure.ipfs.ipfs_service import IPFSService, ipfs_service

logger = get_logger(__name__)

S = TypeVar("S")


class BatchItem(BaseModel):
    """One named payload to pack."""

    name: str = Field(..., min_length=1, description="Identifier inside the batch")
    data: bytes = Field(..., description="Payload bytes")


class BatchPacker:
    """Packs named payloads into content-addressed batches."""

    def __init__(
        self,
        blob_store: Optional[IPFSService] = None,
        max_items: Optional[int] = None,
        concurrency: Optional[int] = None,
    ):
        self.blob_store = blob_store or ipfs_service
        self.max_items = max_items or settings.BATCH_MAX_ITEMS
        self.concurrency = max(1, concurrency or settings.PACK_FETCH_CONCURRENCY)

    def _check_size(self, count: int) -> None:
        if count == 0:
            raise EmptyBatchError()
        if count > self.max_items:
            raise BatchTooLargeError(count, self.max_items)

    @staticmethod
    def _check_names(names: Sequence[str]) -> None:
        seen = set()
        for name in names:
            if "/" in name:
                raise ValidationError(f"Batch item name may not contain '/': {name}")
            if name in seen:
                raise ValidationError(f"Duplicate batch item name: {name}")
            seen.add(name)

    async def pack(self, items: List[BatchItem]) -> PackResult:
        """
        Upload items as one batch.

        Args:
            items: Named payloads, at most max_items

        Returns:
            PackResult with the batch CID and one patch reference per item

        Raises:
            EmptyBatchError: If items is empty
            BatchTooLargeError: If items exceeds the ceiling (no upload is attempted)
        """
        self._check_size(len(items))
        self._check_names([item.name for item in items])

        batch_id, _ = await self.blob_store.add_directory(
            [(item.name, item.data) for item in items]
        )
        logger.info(f"Packed {len(items)} items into batch {batch_id}")

        return PackResult(
            batch_id=batch_id,
            patches=[PatchRef(name=item.name, patch_id=item.name) for item in items],
        )

    async def pack_sources(
        self,
        sources: List[Tuple[str, S]],
        fetch: Callable[[S], Awaitable[bytes]],
    ) -> PackResult:
        """
        Fetch sources concurrently and pack whichever could be prepared.

        A failed fetch drops only that item; its name is reported in
        PackResult.dropped. When nothing could be prepared no upload happens.

        Args:
            sources: (name, source descriptor) pairs
            fetch: Coroutine returning the bytes for one source descriptor

        Returns:
            PackResult
        """
        self._check_size(len(sources))
        self._check_names([name for name, _ in sources])

        semaphore = asyncio.Semaphore(self.concurrency)

        async def _prepare(name: str, source: S) -> Tuple[str, Optional[bytes]]:
            async with semaphore:
                try:
                    return name, await fetch(source)
                except ProfileSyncException as e:
                    logger.warning(f"Skipping batch item {name}: {e.message}")
                    return name, None

        results = await asyncio.gather(*(_prepare(name, source) for name, source in sources))

        prepared = [BatchItem(name=name, data=data) for name, data in results if data is not None]
        dropped = [name for name, data in results if data is None]

        if not prepared:
            logger.warning(f"No batch items could be prepared, dropped {len(dropped)}")
            return PackResult(dropped=dropped)

        result = await self.pack(prepared)
        result.dropped = dropped
        return result

    async def fetch_patch(self, batch_id: str, patch_id: str) -> bytes:
        """Fetch a single item out of a batch without downloading the whole batch."""
        return await self.blob_store.get(batch_id, path=patch_id)

    def patch_url(self, batch_id: str, patch_id: str) -> str:
        return self.blob_store.gateway_url(batch_id, patch_id)


# Global batch packer instance
batch_packer = BatchPacker()
