"""
IPFS Service - content-addressed blob store client.
Uploads opaque payloads through the IPFS node API and reads them back through the gateway.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from profile_sync.core.config import settings
from profile_sync.core.exceptions import BlobNotFoundError, StoreUnavailableError
from profile_sync.core.logging import get_logger, log_ipfs_operation
from profile_sync.domain.models.snapshot import canonical_json

logger = get_logger(__name__)

# Fixed add parameters: equal bytes must always produce an equal CID
ADD_PARAMS = {"cid-version": "1", "raw-leaves": "true", "pin": "true"}

NOT_FOUND_STATUSES = (404, 410)


class IPFSService:
    """Service for IPFS operations. There is no delete: the store is append-only."""

    def __init__(
        self,
        add_url: Optional[str] = None,
        gateway_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_backoff: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize IPFS service."""
        self.ipfs_add_url = add_url or settings.IPFS_GATEWAY_URL_POST
        self.ipfs_gateway = (gateway_url or settings.IPFS_GATEWAY_URL_GET).rstrip("/")
        self.timeout = timeout or settings.IPFS_TIMEOUT_SECONDS
        self.max_retries = max(1, max_retries or settings.IPFS_MAX_RETRIES)
        self.retry_backoff = (
            settings.IPFS_RETRY_BACKOFF_SECONDS if retry_backoff is None else retry_backoff
        )
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Send a request, retrying transport errors and 5xx responses.

        Raises:
            StoreUnavailableError: After the last attempt fails
        """
        last_error = ""
        for attempt in range(1, self.max_retries + 1):
            try:
                async with self._client() as client:
                    response = await client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                last_error = f"{type(e).__name__}: {e}"
            else:
                if response.status_code < 500:
                    return response
                last_error = f"{response.status_code} {response.text}"

            logger.warning(
                f"IPFS {method} {url} failed (attempt {attempt}/{self.max_retries}): {last_error}"
            )
            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_backoff * attempt)

        raise StoreUnavailableError(
            f"IPFS request failed after {self.max_retries} attempts",
            {"url": url, "error": last_error},
        )

    async def put(self, data: bytes) -> str:
        """
        Upload a payload.

        Args:
            data: Raw bytes

        Returns:
            CID of the payload. Uploading the same bytes again returns the same CID.
        """
        files = {"file": ("blob", data, "application/octet-stream")}
        response = await self._send("POST", self.ipfs_add_url, params=ADD_PARAMS, files=files)
        if response.status_code != 200:
            raise StoreUnavailableError(
                "IPFS add rejected the payload",
                {"status": response.status_code, "body": response.text},
            )

        ipfs_hash = response.json().get("Hash")
        if not ipfs_hash:
            raise StoreUnavailableError("IPFS add response missing Hash", {"body": response.text})

        log_ipfs_operation("upload", ipfs_hash=ipfs_hash, file_size=len(data))
        return ipfs_hash

    async def add_directory(self, items: List[Tuple[str, bytes]]) -> Tuple[str, Dict[str, str]]:
        """
        Upload several named payloads as one directory in a single call.

        Args:
            items: (name, bytes) pairs

        Returns:
            Tuple of (directory CID, {name: item CID})
        """
        files = [
            ("file", (name, data, "application/octet-stream")) for name, data in items
        ]
        params = dict(ADD_PARAMS)
        params["wrap-with-directory"] = "true"

        response = await self._send("POST", self.ipfs_add_url, params=params, files=files)
        if response.status_code != 200:
            raise StoreUnavailableError(
                "IPFS directory add rejected the batch",
                {"status": response.status_code, "body": response.text},
            )

        # Kubo streams one JSON object per line; the wrapping directory has an empty Name
        directory_cid = None
        item_cids: Dict[str, str] = {}
        for line in response.text.splitlines():
            if not line.strip():
                continue
            entry = json.loads(line)
            if entry.get("Name"):
                item_cids[entry["Name"]] = entry["Hash"]
            else:
                directory_cid = entry.get("Hash")

        if not directory_cid:
            raise StoreUnavailableError(
                "IPFS directory add response missing directory hash",
                {"body": response.text[:500]},
            )

        log_ipfs_operation(
            "upload_batch",
            ipfs_hash=directory_cid,
            file_size=sum(len(data) for _, data in items),
            item_count=len(items),
        )
        return directory_cid, item_cids

    async def get(self, cid: str, path: Optional[str] = None) -> bytes:
        """
        Fetch a payload by CID, optionally a path inside a directory CID.

        Raises:
            BlobNotFoundError: If the gateway does not know the CID or path
            StoreUnavailableError: On transport failure
        """
        url = self.gateway_url(cid, path)
        response = await self._send("GET", url)

        if response.status_code in NOT_FOUND_STATUSES:
            raise BlobNotFoundError(cid if not path else f"{cid}/{path}")
        if response.status_code != 200:
            raise StoreUnavailableError(
                "IPFS gateway returned an unexpected status",
                {"status": response.status_code, "url": url},
            )

        log_ipfs_operation("retrieve", ipfs_hash=cid, file_size=len(response.content), path=path)
        return response.content

    async def put_json(self, payload: Any) -> str:
        """Upload a JSON document using the canonical encoding."""
        return await self.put(canonical_json(payload))

    async def get_json(self, cid: str) -> Any:
        """Fetch and decode a JSON document."""
        data = await self.get(cid)
        try:
            return json.loads(data)
        except ValueError as e:
            raise StoreUnavailableError(
                "Blob is not a JSON document", {"cid": cid, "error": str(e)}
            ) from e

    def gateway_url(self, cid: str, path: Optional[str] = None) -> str:
        """
        Get the full gateway URL for a CID.

        Args:
            cid: IPFS hash (CID)
            path: Optional path inside a directory CID

        Returns:
            Gateway URL
        """
        url = f"{self.ipfs_gateway}/{cid}"
        if path:
            url = f"{url}/{quote(path)}"
        return url


# Global IPFS service instance
ipfs_service = IPFSService()
