import asyncio
from unittest.mock import AsyncMock

import pytest

from profile_sync.core.exceptions import (
    BlobNotFoundError,
    BlockchainError,
    NotPublishedError,
    SagaInProgressError,
    StoreUnavailableError,
    TransitionRejectedError,
    ValidationError,
)
from profile_sync.domain.models.identity import ImageRef, Project
from profile_sync.domain.models.snapshot import Snapshot
from profile_sync.domain.models.sync import PUBLISH_STEPS, SyncStatus, SyncStep, TransitionKind

from fakes import ALICE_ID, FakeSigner

pytestmark = pytest.mark.anyio("asyncio")


@pytest.mark.anyio
async def test_publish_then_pull_round_trips_alice(service, repository, registry):
    result = await service.publish(ALICE_ID, FakeSigner())

    assert result.status == SyncStatus.SUCCESS
    assert registry.pointers[result.pointer_handle] == result.snapshot_cid

    await service.pull(ALICE_ID)
    record = repository.records[ALICE_ID]
    assert [p.name for p in record.projects] == ["P1"]
    assert record.projects[0].pending_deletion is None
    assert record.snapshot_cid == result.snapshot_cid
    assert record.pointer_handle == result.pointer_handle


@pytest.mark.anyio
async def test_first_publish_registers_then_updates(service, registry):
    signer = FakeSigner()
    await service.publish(ALICE_ID, signer)
    await service.publish(ALICE_ID, signer)

    assert [t.kind for t in signer.seen] == [TransitionKind.REGISTER, TransitionKind.UPDATE]


@pytest.mark.anyio
async def test_progress_reports_every_step_in_order(service):
    events = []

    async def on_progress(event):
        events.append(event)

    await service.publish(ALICE_ID, FakeSigner(), on_progress)

    assert [e.step for e in events] == PUBLISH_STEPS
    signing = events[3]
    assert signing.status == SyncStatus.AWAITING_SIGNATURE
    assert signing.unsigned_transition is not None


@pytest.mark.anyio
async def test_signer_rejection_leaves_record_untouched(service, repository, alice, blob_store):
    with pytest.raises(TransitionRejectedError) as exc_info:
        await service.publish(ALICE_ID, FakeSigner(reject=True))

    assert repository.updates == []
    assert repository.records[ALICE_ID] == alice
    orphan = exc_info.value.orphan_cid
    assert orphan in blob_store.blobs


@pytest.mark.anyio
async def test_ledger_rejection_reports_orphan_and_relink_reuses_it(service, repository, registry, blob_store):
    registry.reject_reason = "nonce too low"
    with pytest.raises(TransitionRejectedError) as exc_info:
        await service.publish(ALICE_ID, FakeSigner())
    assert repository.updates == []

    registry.reject_reason = None
    uploads_before = blob_store.put_calls
    result = await service.relink(ALICE_ID, exc_info.value.orphan_cid, FakeSigner())

    assert blob_store.put_calls == uploads_before
    assert result.snapshot_cid == exc_info.value.orphan_cid
    assert repository.records[ALICE_ID].snapshot_cid == exc_info.value.orphan_cid


@pytest.mark.anyio
async def test_failures_before_confirmation_do_not_write(service, repository, alice):
    repository.records[ALICE_ID] = alice.model_copy(update={"wallet_address": None})

    with pytest.raises(ValidationError):
        await service.publish(ALICE_ID, FakeSigner())
    assert repository.updates == []


@pytest.mark.anyio
async def test_upload_failure_does_not_write(service, repository, alice, blob_store, registry, monkeypatch):
    monkeypatch.setattr(blob_store, "put_json", AsyncMock(side_effect=StoreUnavailableError()))
    events = []

    async def on_progress(event):
        events.append(event)

    with pytest.raises(StoreUnavailableError):
        await service.publish(ALICE_ID, FakeSigner(), on_progress)

    assert events[-1].step == SyncStep.UPLOAD_SNAPSHOT
    assert repository.updates == []
    assert repository.records[ALICE_ID] == alice
    assert registry.submitted == []


@pytest.mark.anyio
@pytest.mark.parametrize("failing", ["resolve_handle", "build_register_transition"])
async def test_transition_build_failure_does_not_write(
    service, repository, alice, registry, monkeypatch, failing
):
    monkeypatch.setattr(registry, failing, AsyncMock(side_effect=BlockchainError("rpc down")))
    signer = FakeSigner()

    with pytest.raises(BlockchainError):
        await service.publish(ALICE_ID, signer)

    assert signer.seen == []
    assert repository.updates == []
    assert repository.records[ALICE_ID] == alice
    assert registry.submitted == []


@pytest.mark.anyio
async def test_commit_is_retried_until_it_succeeds(service, repository):
    repository.fail_updates = 3

    result = await service.publish(ALICE_ID, FakeSigner())

    assert result.status == SyncStatus.SUCCESS
    assert repository.fail_updates == 0
    assert repository.records[ALICE_ID].snapshot_cid == result.snapshot_cid


@pytest.mark.anyio
async def test_unchanged_profile_publishes_same_snapshot(service, repository):
    first = await service.publish(ALICE_ID, FakeSigner())
    second = await service.publish(ALICE_ID, FakeSigner())

    assert first.snapshot_cid == second.snapshot_cid
    assert repository.records[ALICE_ID].snapshot_cid == first.snapshot_cid


@pytest.mark.anyio
async def test_concurrent_publish_for_same_identity_is_rejected(service):
    gate = asyncio.Event()

    class SlowSigner(FakeSigner):
        async def sign(self, unsigned):
            await gate.wait()
            return await super().sign(unsigned)

    first = asyncio.create_task(service.publish(ALICE_ID, SlowSigner()))
    await asyncio.sleep(0.01)

    with pytest.raises(SagaInProgressError):
        await service.publish(ALICE_ID, FakeSigner())
    with pytest.raises(SagaInProgressError):
        await service.pull(ALICE_ID)

    gate.set()
    assert (await first).status == SyncStatus.SUCCESS


@pytest.mark.anyio
async def test_edits_during_signature_wait_survive_commit(service, repository):
    gate = asyncio.Event()

    class SlowSigner(FakeSigner):
        async def sign(self, unsigned):
            await gate.wait()
            return await super().sign(unsigned)

    task = asyncio.create_task(service.publish(ALICE_ID, SlowSigner()))
    await asyncio.sleep(0.01)

    draft = Project(id="p2", name="Draft")
    await repository.update_identity(
        ALICE_ID,
        {"projects": [p.model_dump(mode="json") for p in repository.records[ALICE_ID].projects + [draft]]},
    )
    gate.set()
    await task

    assert [p.id for p in repository.records[ALICE_ID].projects] == ["p1", "p2"]


@pytest.mark.anyio
async def test_publish_finally_drops_projects_pending_deletion(service, repository):
    await service.publish(ALICE_ID, FakeSigner())
    record = repository.records[ALICE_ID]
    record.projects.append(Project(id="p2", name="P2"))
    await service.publish(ALICE_ID, FakeSigner())

    record = repository.records[ALICE_ID]
    record.projects[1].pending_deletion = True
    assert (await service.diff(ALICE_ID)).has_differences is True

    result = await service.publish(ALICE_ID, FakeSigner())

    record = repository.records[ALICE_ID]
    assert [p.id for p in record.projects] == ["p1"]
    assert (await service.diff(ALICE_ID)).has_differences is False
    assert result.status == SyncStatus.SUCCESS


@pytest.mark.anyio
async def test_pull_preserves_pending_deletion(service, repository):
    record = repository.records[ALICE_ID]
    record.projects.append(Project(id="p2", name="P2"))
    await service.publish(ALICE_ID, FakeSigner())

    repository.records[ALICE_ID].projects[1].pending_deletion = True
    result = await service.pull(ALICE_ID)

    assert result.preserved_pending_deletions == ["p2"]
    assert repository.records[ALICE_ID].projects[1].pending_deletion is True


@pytest.mark.anyio
async def test_pull_without_pointer_is_not_published(service):
    with pytest.raises(NotPublishedError):
        await service.pull(ALICE_ID)


@pytest.mark.anyio
async def test_local_images_are_packed_and_failures_skipped(service, repository, media, blob_store):
    media.files = {f"shot{i}.png": f"png{i}".encode() for i in range(4)}
    record = repository.records[ALICE_ID]
    record.projects[0].images = [ImageRef(local_filename=f"shot{i}.png", index=i) for i in range(5)]
    record.avatar = ImageRef(local_filename="shot0.png")

    result = await service.publish(ALICE_ID, FakeSigner())

    assert result.skipped_images == ["p1_img4"]
    assert blob_store.add_directory_calls == 1
    project = repository.records[ALICE_ID].projects[0]
    assert project.batch_id is not None
    assert [img.patch_id for img in project.images[:4]] == [f"p1_img{i}" for i in range(4)]
    assert project.images[4].batch_id is None
    assert project.images[4].local_filename == "shot4.png"
    assert repository.records[ALICE_ID].avatar.patch_id == "avatar"

    snapshot = Snapshot.model_validate(await blob_store.get_json(result.snapshot_cid))
    assert await blob_store.get(project.batch_id, path="p1_img2") == b"png2"
    assert snapshot.projects[0].images[2].batch_id == project.batch_id


@pytest.mark.anyio
async def test_published_images_are_not_packed_again(service, repository, media, blob_store):
    media.files = {"shot.png": b"png"}
    repository.records[ALICE_ID].projects[0].images = [ImageRef(local_filename="shot.png")]
    await service.publish(ALICE_ID, FakeSigner())

    media.requested.clear()
    await service.publish(ALICE_ID, FakeSigner())

    assert media.requested == []
    assert blob_store.add_directory_calls == 1


@pytest.mark.anyio
async def test_diff_for_never_published_identity(service):
    result = await service.diff(ALICE_ID)

    assert result.has_differences is True
    assert result.published is False


@pytest.mark.anyio
async def test_unbind_strips_published_addressing(service, repository, media, alice):
    media.files = {"shot.png": b"png"}
    repository.records[ALICE_ID].projects[0].images = [
        ImageRef(local_filename="shot.png"),
        ImageRef(direct_cid="bafkremoteonly"),
    ]
    await service.publish(ALICE_ID, FakeSigner())

    await service.unbind(ALICE_ID, acting_wallet=alice.wallet_address)

    record = repository.records[ALICE_ID]
    assert record.snapshot_cid is None
    assert record.pointer_handle is None
    assert record.wallet_address is None
    assert record.projects[0].batch_id is None
    assert record.projects[0].images == [ImageRef(local_filename="shot.png")]


@pytest.mark.anyio
async def test_unbind_refuses_never_published_record(service, repository, alice):
    with pytest.raises(NotPublishedError):
        await service.unbind(ALICE_ID, acting_wallet=alice.wallet_address)

    assert repository.updates == []
    assert repository.records[ALICE_ID].wallet_address == alice.wallet_address


@pytest.mark.anyio
async def test_acknowledge_expired_clears_binding_only_when_blob_is_gone(service, repository, blob_store):
    result = await service.publish(ALICE_ID, FakeSigner())

    with pytest.raises(ValidationError):
        await service.acknowledge_expired(ALICE_ID)

    del blob_store.blobs[result.snapshot_cid]
    with pytest.raises(BlobNotFoundError):
        await service.diff(ALICE_ID)

    await service.acknowledge_expired(ALICE_ID)
    record = repository.records[ALICE_ID]
    assert record.snapshot_cid is None
    assert record.pointer_handle is None
    assert record.wallet_address is not None
