import hashlib
import json

import httpx
import pytest

from profile_sync.core.exceptions import BlobNotFoundError, StoreUnavailableError
from profile_sync.infrastructure.ipfs.ipfs_service import IPFSService

pytestmark = pytest.mark.anyio("asyncio")

ADD_URL = "http://ipfs.test:5001/api/v0/add"
GATEWAY = "http://gateway.test/ipfs"


def make_service(handler) -> IPFSService:
    return IPFSService(
        add_url=ADD_URL,
        gateway_url=GATEWAY,
        timeout=5,
        max_retries=3,
        retry_backoff=0,
        transport=httpx.MockTransport(handler),
    )


def content_hash(request: httpx.Request) -> str:
    # The multipart boundary changes per request, so hash only the file part
    body = request.content
    start = body.index(b"\r\n\r\n") + 4
    end = body.rindex(b"\r\n--")
    return "bafk" + hashlib.sha256(body[start:end]).hexdigest()[:20]


@pytest.mark.anyio
async def test_put_uses_fixed_add_parameters_and_is_idempotent():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"Hash": content_hash(request)})

    service = make_service(handler)
    first = await service.put(b"same bytes")
    second = await service.put(b"same bytes")
    other = await service.put(b"other bytes")

    assert first == second
    assert first != other
    params = seen[0].url.params
    assert params["cid-version"] == "1"
    assert params["raw-leaves"] == "true"
    assert params["pin"] == "true"


@pytest.mark.anyio
async def test_put_retries_server_errors_then_succeeds():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] < 3:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json={"Hash": "bafkretry"})

    assert await make_service(handler).put(b"payload") == "bafkretry"
    assert calls["count"] == 3


@pytest.mark.anyio
async def test_put_raises_store_unavailable_after_transport_failures():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(StoreUnavailableError):
        await make_service(handler).put(b"payload")
    assert calls["count"] == 3


@pytest.mark.anyio
async def test_get_missing_blob_is_not_retried():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(404, text="not found")

    with pytest.raises(BlobNotFoundError):
        await make_service(handler).get("bafkmissing")
    assert calls["count"] == 1


@pytest.mark.anyio
async def test_get_reads_item_inside_directory():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/ipfs/bafydir/p1_img0"
        return httpx.Response(200, content=b"png-bytes")

    assert await make_service(handler).get("bafydir", path="p1_img0") == b"png-bytes"


@pytest.mark.anyio
async def test_add_directory_returns_directory_and_item_cids():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["wrap-with-directory"] == "true"
        lines = [
            {"Name": "a", "Hash": "bafka", "Size": "1"},
            {"Name": "b", "Hash": "bafkb", "Size": "1"},
            {"Name": "", "Hash": "bafydir", "Size": "2"},
        ]
        return httpx.Response(200, text="\n".join(json.dumps(line) for line in lines))

    directory_cid, items = await make_service(handler).add_directory([("a", b"1"), ("b", b"2")])

    assert directory_cid == "bafydir"
    assert items == {"a": "bafka", "b": "bafkb"}


@pytest.mark.anyio
async def test_get_json_round_trips_canonical_document():
    stored = {}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            body = request.content
            stored["doc"] = body[body.index(b"\r\n\r\n") + 4:body.rindex(b"\r\n--")]
            return httpx.Response(200, json={"Hash": "bafkdoc"})
        return httpx.Response(200, content=stored["doc"])

    service = make_service(handler)
    cid = await service.put_json({"b": 1, "a": "é"})

    assert stored["doc"] == '{"a":"é","b":1}'.encode("utf-8")
    assert await service.get_json(cid) == {"a": "é", "b": 1}


def test_gateway_url_quotes_paths():
    service = IPFSService(gateway_url=GATEWAY + "/")
    assert service.gateway_url("bafk1") == "http://gateway.test/ipfs/bafk1"
    assert service.gateway_url("bafydir", "p 1_img0") == "http://gateway.test/ipfs/bafydir/p%201_img0"
