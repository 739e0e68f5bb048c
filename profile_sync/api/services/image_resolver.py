"""
Image Reference Resolver.
Turns an ImageRef into the URL a reader should load, preferring the published tier.
"""

from typing import Awaitable, Callable, List, Optional

from profile_sync.core.config import settings
from profile_sync.core.exceptions import ProfileSyncException
from profile_sync.core.logging import get_logger
from profile_sync.domain.models.identity import ImageAddressing, ImageRef
from profile_sync.infrastructure.ipfs.ipfs_service import IPFSService, ipfs_service

logger = get_logger(__name__)


class ImageReferenceResolver:
    """Resolves image references with direct > batch > local priority."""

    def __init__(
        self,
        blob_store: Optional[IPFSService] = None,
        media_base_url: Optional[str] = None,
        projects_path: Optional[str] = None,
        placeholder_url: Optional[str] = None,
    ):
        self.blob_store = blob_store or ipfs_service
        self.media_base_url = (media_base_url or settings.MEDIA_BASE_URL).rstrip("/")
        self.projects_path = "/" + (projects_path or settings.MEDIA_PROJECTS_PATH).strip("/")
        self.placeholder_url = placeholder_url or settings.IMAGE_PLACEHOLDER_URL

    def url_for(self, ref: ImageRef, mode: ImageAddressing) -> str:
        if mode == ImageAddressing.DIRECT:
            return self.blob_store.gateway_url(ref.direct_cid)
        if mode == ImageAddressing.BATCH:
            return self.blob_store.gateway_url(ref.batch_id, ref.patch_id)
        return f"{self.media_base_url}{self.projects_path}/{ref.local_filename}"

    def candidate_urls(self, ref: Optional[ImageRef]) -> List[str]:
        """All URLs an image can be loaded from, best first."""
        if ref is None:
            return []
        return [self.url_for(ref, mode) for mode in ref.addressing_modes]

    def resolve(self, ref: Optional[ImageRef]) -> Optional[str]:
        """Best URL for an image, or None when it has no addressing at all."""
        candidates = self.candidate_urls(ref)
        return candidates[0] if candidates else None

    def resolve_or_placeholder(self, ref: Optional[ImageRef]) -> str:
        return self.resolve(ref) or self.placeholder_url

    async def fetch_with_fallback(
        self,
        ref: Optional[ImageRef],
        fetch: Callable[[str], Awaitable[bytes]],
    ) -> Optional[bytes]:
        """
        Load an image, falling back exactly once.

        The best URL is tried first; on failure the next available URL is tried.
        Returns None when both fail, in which case the caller renders a placeholder.
        """
        for url in self.candidate_urls(ref)[:2]:
            try:
                return await fetch(url)
            except ProfileSyncException as e:
                logger.warning(f"Image load failed for {url}: {e.message}")
        return None


# Global resolver instance
image_resolver = ImageReferenceResolver()
