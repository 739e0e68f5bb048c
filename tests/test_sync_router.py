import asyncio

import pytest

from profile_sync.api.routers import profile_router, sync_router
from profile_sync.api.services.signature_broker import SignatureBroker
from profile_sync.main import app
from profile_sync.api.deps.session_guard import get_current_user
from profile_sync.domain.models.identity import ImageRef

from fakes import ALICE_ID

pytestmark = pytest.mark.anyio("asyncio")


@pytest.fixture(autouse=True)
def wire_fakes(monkeypatch, service, repository):
    """Point the routers at in-memory collaborators and a fresh broker."""
    monkeypatch.setattr(sync_router, "reconciliation_service", service)
    monkeypatch.setattr(sync_router, "signature_broker", SignatureBroker())
    monkeypatch.setattr(profile_router, "identity_repository", repository)


async def wait_for_status(client, *statuses, attempts: int = 200):
    for _ in range(attempts):
        payload = (await client.get("/api/v1/sync/publish/status")).json()
        if payload["data"] and payload["data"]["status"] in statuses:
            return payload["data"]
        await asyncio.sleep(0.01)
    raise AssertionError(f"publish never reached {statuses}")


@pytest.mark.anyio
async def test_publish_waits_for_wallet_signature(async_client, repository):
    response = await async_client.post("/api/v1/sync/publish")
    assert response.status_code == 202
    assert response.json()["success"] is True

    pending = await wait_for_status(async_client, "awaiting_signature")
    assert pending["step"] == "BuildAndSign"
    transition = pending["unsigned_transition"]
    assert transition["kind"] == "register"
    assert repository.updates == []

    response = await async_client.post(
        "/api/v1/sync/publish/signature", json={"signed_transaction": "0x01"}
    )
    assert response.status_code == 200

    done = await wait_for_status(async_client, "success", "failed")
    assert done["status"] == "success"
    assert done["result"]["snapshot_cid"] == transition["snapshot_cid"]
    assert repository.records[ALICE_ID].snapshot_cid == transition["snapshot_cid"]


@pytest.mark.anyio
async def test_wallet_rejection_reports_orphan_cid(async_client, repository):
    await async_client.post("/api/v1/sync/publish")
    pending = await wait_for_status(async_client, "awaiting_signature")

    await async_client.post("/api/v1/sync/publish/signature", json={"rejected": True})

    done = await wait_for_status(async_client, "success", "failed")
    assert done["status"] == "failed"
    assert done["result"]["error_code"] == "TRANSITION_REJECTED"
    assert done["result"]["orphan_cid"] == pending["unsigned_transition"]["snapshot_cid"]
    assert repository.updates == []


@pytest.mark.anyio
async def test_second_publish_while_running_conflicts(async_client):
    await async_client.post("/api/v1/sync/publish")
    await wait_for_status(async_client, "awaiting_signature")

    response = await async_client.post("/api/v1/sync/publish")

    assert response.status_code == 409
    assert response.json()["data"]["error_code"] == "SAGA_IN_PROGRESS"
    await async_client.post("/api/v1/sync/publish/signature", json={"rejected": True})
    await wait_for_status(async_client, "failed")


@pytest.mark.anyio
async def test_signature_without_pending_transition_is_rejected(async_client):
    response = await async_client.post(
        "/api/v1/sync/publish/signature", json={"signed_transaction": "0x01"}
    )

    assert response.status_code == 422
    assert response.json()["success"] is False


@pytest.mark.anyio
async def test_signature_body_needs_exactly_one_answer(async_client):
    response = await async_client.post("/api/v1/sync/publish/signature", json={})
    assert response.status_code == 422


@pytest.mark.anyio
async def test_diff_and_pull_before_publishing(async_client):
    diff = await async_client.get("/api/v1/sync/diff")
    assert diff.status_code == 200
    assert diff.json()["data"] == {"has_differences": True, "published": False, "snapshot_cid": None}

    pull = await async_client.post("/api/v1/sync/pull")
    assert pull.status_code == 404
    assert pull.json()["data"]["error_code"] == "NOT_PUBLISHED"


@pytest.mark.anyio
async def test_unbind_requires_bound_wallet(async_client, test_user, repository):
    repository.records[ALICE_ID].snapshot_cid = "bafkpublished"
    repository.records[ALICE_ID].pointer_handle = "7"
    test_user.wallet_address = "0x2222222222222222222222222222222222222222"

    response = await async_client.post("/api/v1/sync/unbind")

    assert response.status_code == 403
    assert repository.records[ALICE_ID].wallet_address is not None


@pytest.mark.anyio
async def test_profile_images_resolve_with_placeholder(async_client, repository):
    record = repository.records[ALICE_ID]
    record.projects[0].images = [ImageRef(batch_id="bafydir", patch_id="p1_img0", local_filename="a.png")]

    response = await async_client.get("/api/v1/profile/alice/images")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["avatar"]["url"].endswith(".svg")
    image = data["projects"][0]["images"][0]
    assert image["url"].endswith("/bafydir/p1_img0")
    assert image["fallback_url"].endswith("/projects/a.png")
    assert image["published"] is True


@pytest.mark.anyio
async def test_unknown_profile_is_not_found(async_client):
    response = await async_client.get("/api/v1/profile/nobody/images")
    assert response.status_code == 404


@pytest.mark.anyio
async def test_missing_session_is_unauthorized(async_client):
    app.dependency_overrides.pop(get_current_user, None)

    response = await async_client.get("/api/v1/sync/diff")

    assert response.status_code == 401


@pytest.mark.anyio
async def test_health(async_client):
    response = await async_client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
