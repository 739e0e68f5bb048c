"""
HTTP media source.
Loads image bytes for the publish saga from wherever the image currently lives.
"""

from typing import Optional

import httpx

from profile_sync.api.services.image_resolver import ImageReferenceResolver, image_resolver
from profile_sync.core.config import settings
from profile_sync.core.exceptions import MediaNotFoundError
from profile_sync.core.logging import get_logger
from profile_sync.domain.models.identity import ImageRef

logger = get_logger(__name__)


class HttpMediaSource:
    """Fetches images over HTTP, following the resolver's priority with one fallback."""

    def __init__(
        self,
        resolver: Optional[ImageReferenceResolver] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.resolver = resolver or image_resolver
        self.timeout = timeout or settings.IPFS_TIMEOUT_SECONDS
        self._transport = transport

    async def fetch_url(self, url: str) -> bytes:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            raise MediaNotFoundError(url, {"error": str(e)}) from e

        if response.status_code != 200:
            raise MediaNotFoundError(url, {"status": response.status_code})
        return response.content

    async def fetch_bytes(self, ref: ImageRef) -> bytes:
        """
        Load the bytes of an image.

        Raises:
            MediaNotFoundError: If no candidate URL served the image
        """
        data = await self.resolver.fetch_with_fallback(ref, self.fetch_url)
        if data is None:
            source = ref.local_filename or ref.direct_cid or f"{ref.batch_id}/{ref.patch_id}"
            raise MediaNotFoundError(source)

        logger.debug(f"Fetched media {ref.local_filename or ref.direct_cid}: {len(data)} bytes")
        return data


# Global media source instance
media_source = HttpMediaSource()
