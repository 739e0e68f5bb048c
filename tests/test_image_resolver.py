import httpx
import pytest

from profile_sync.api.services.image_resolver import ImageReferenceResolver
from profile_sync.core.exceptions import MediaNotFoundError
from profile_sync.domain.models.identity import ImageRef
from profile_sync.infrastructure.media.media_source import HttpMediaSource

from fakes import FakeBlobStore

pytestmark = pytest.mark.anyio("asyncio")


@pytest.fixture
def resolver() -> ImageReferenceResolver:
    return ImageReferenceResolver(
        blob_store=FakeBlobStore(),
        media_base_url="http://media.test/",
        projects_path="projects",
        placeholder_url="/images/placeholder.svg",
    )


def test_direct_beats_batch_beats_local(resolver):
    ref = ImageRef(direct_cid="bafkdirect", batch_id="bafydir", patch_id="p1_img0", local_filename="a.png")

    assert resolver.candidate_urls(ref) == [
        "https://gateway.test/ipfs/bafkdirect",
        "https://gateway.test/ipfs/bafydir/p1_img0",
        "http://media.test/projects/a.png",
    ]
    assert resolver.resolve(ref) == "https://gateway.test/ipfs/bafkdirect"


def test_batch_beats_local(resolver):
    ref = ImageRef(batch_id="bafydir", patch_id="p1_img0", local_filename="a.png")
    assert resolver.resolve(ref) == "https://gateway.test/ipfs/bafydir/p1_img0"


def test_local_only_and_missing_refs(resolver):
    assert resolver.resolve(ImageRef(local_filename="a.png")) == "http://media.test/projects/a.png"
    assert resolver.resolve(None) is None
    assert resolver.resolve_or_placeholder(None) == "/images/placeholder.svg"


@pytest.mark.anyio
async def test_fetch_falls_back_exactly_once(resolver):
    ref = ImageRef(direct_cid="bafkdirect", batch_id="bafydir", patch_id="p1_img0", local_filename="a.png")
    tried = []

    async def fetch(url: str) -> bytes:
        tried.append(url)
        raise MediaNotFoundError(url)

    assert await resolver.fetch_with_fallback(ref, fetch) is None
    assert tried == resolver.candidate_urls(ref)[:2]


@pytest.mark.anyio
async def test_fetch_uses_fallback_when_first_fails(resolver):
    ref = ImageRef(batch_id="bafydir", patch_id="p1_img0", local_filename="a.png")

    async def fetch(url: str) -> bytes:
        if "gateway" in url:
            raise MediaNotFoundError(url)
        return b"local"

    assert await resolver.fetch_with_fallback(ref, fetch) == b"local"


@pytest.mark.anyio
async def test_http_media_source_reads_local_file(resolver):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/projects/a.png":
            return httpx.Response(200, content=b"png")
        return httpx.Response(404)

    source = HttpMediaSource(resolver=resolver, transport=httpx.MockTransport(handler))

    assert await source.fetch_bytes(ImageRef(local_filename="a.png")) == b"png"
    with pytest.raises(MediaNotFoundError):
        await source.fetch_bytes(ImageRef(local_filename="missing.png"))
