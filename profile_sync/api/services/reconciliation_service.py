"""
Reconciliation Service.
Keeps the mutable identity record and the published snapshot consistent:
publish (saga), pull, diff, relink, unbind and expiry acknowledgement.
"""

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from pydantic import ValidationError as PydanticValidationError

from profile_sync.core.config import settings
from profile_sync.core.exceptions import (
    BlobNotFoundError,
    NotPublishedError,
    RecordWriteFailedError,
    SignerRejectedError,
    StoreUnavailableError,
    TransitionRejectedError,
    ValidationError,
)
from profile_sync.core.logging import get_logger, log_sync_operation
from profile_sync.domain.models.identity import IdentityRecord, ImageRef, Project
from profile_sync.domain.models.snapshot import Snapshot
from profile_sync.domain.models.sync import (
    STEP_LABELS,
    Confirmation,
    DiffResult,
    ProgressEvent,
    PublishResult,
    PullResult,
    SyncStatus,
    SyncStep,
    UnsignedTransition,
)
from profile_sync.domain.repositories.identity_repository import (
    IdentityRepository,
    identity_repository,
)
from profile_sync.domain.snapshot_rules import (
    assemble_snapshot,
    diff_snapshot,
    merge_pulled_snapshot,
    record_fields,
    strip_published_addressing,
)
from profile_sync.infrastructure.blockchain.pointer_registry import PointerRegistry, pointer_registry
from profile_sync.infrastructure.blockchain.signature_utils import Signer
from profile_sync.infrastructure.cache.saga_lock import SagaLock, get_saga_lock
from profile_sync.infrastructure.ipfs.batch_packer import BatchPacker, batch_packer
from profile_sync.infrastructure.ipfs.ipfs_service import IPFSService, ipfs_service
from profile_sync.infrastructure.media.media_source import media_source

logger = get_logger(__name__)

ProgressCallback = Callable[[ProgressEvent], Awaitable[None]]

AVATAR_IMAGE_NAME = "avatar"


class MediaSource(Protocol):
    async def fetch_bytes(self, ref: ImageRef) -> bytes:
        ...


def image_name(project_id: str, index: int) -> str:
    """Name of a project image inside a batch."""
    return f"{project_id}_img{index}"


class ReconciliationService:
    """Engine behind publish, pull and diff for one identity at a time."""

    def __init__(
        self,
        repository: Optional[IdentityRepository] = None,
        blob_store: Optional[IPFSService] = None,
        packer: Optional[BatchPacker] = None,
        registry: Optional[PointerRegistry] = None,
        media: Optional[MediaSource] = None,
        saga_lock: Optional[SagaLock] = None,
        commit_backoff: Optional[float] = None,
        commit_max_backoff: Optional[float] = None,
    ):
        self.repository = repository or identity_repository
        self.blob_store = blob_store or ipfs_service
        self.packer = packer or batch_packer
        self.registry = registry or pointer_registry
        self.media = media or media_source
        self.saga_lock = saga_lock or get_saga_lock()
        self.commit_backoff = (
            settings.COMMIT_RETRY_BACKOFF_SECONDS if commit_backoff is None else commit_backoff
        )
        self.commit_max_backoff = (
            settings.COMMIT_RETRY_MAX_BACKOFF_SECONDS
            if commit_max_backoff is None
            else commit_max_backoff
        )

    @staticmethod
    async def _emit(
        on_progress: Optional[ProgressCallback],
        step: SyncStep,
        status: SyncStatus = SyncStatus.RUNNING,
        unsigned: Optional[UnsignedTransition] = None,
    ) -> None:
        if on_progress is None:
            return
        await on_progress(
            ProgressEvent(
                step=step,
                status=status,
                label=STEP_LABELS[step],
                unsigned_transition=unsigned,
            )
        )

    async def _load_snapshot(self, cid: str) -> Snapshot:
        payload = await self.blob_store.get_json(cid)
        try:
            return Snapshot.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(
                "Stored snapshot is malformed", {"cid": cid, "error": str(e)}
            ) from e

    @staticmethod
    def _require_wallet(record: IdentityRecord) -> str:
        if not record.wallet_address:
            raise ValidationError(
                "Identity has no bound wallet to sign with",
                {"identity_id": record.id},
            )
        return record.wallet_address

    # Publish saga

    async def publish(
        self,
        identity_id: str,
        signer: Signer,
        on_progress: Optional[ProgressCallback] = None,
    ) -> PublishResult:
        """
        Publish the record as a new snapshot and move the pointer to it.

        The record is only written after the ledger confirms the new pointer.

        Raises:
            SagaInProgressError: Another saga holds this identity
            TransitionRejectedError: Signer or ledger refused; details carry orphan_cid
            ProfileSyncException: Any failure before the snapshot was uploaded
        """
        async with self.saga_lock.hold(identity_id):
            await self._emit(on_progress, SyncStep.ASSEMBLE_SNAPSHOT)
            record = await self.repository.get_identity(identity_id)
            self._require_wallet(record)
            snapshot = assemble_snapshot(record)
            log_sync_operation(
                "publish",
                identity_id=identity_id,
                username=record.username,
                step=SyncStep.ASSEMBLE_SNAPSHOT.value,
                project_count=len(snapshot.projects),
            )

            await self._emit(on_progress, SyncStep.PACK_CHANGED_IMAGES)
            snapshot, skipped = await self._pack_changed_images(snapshot)

            await self._emit(on_progress, SyncStep.UPLOAD_SNAPSHOT)
            snapshot_cid = await self.blob_store.put_json(snapshot.to_payload())
            log_sync_operation(
                "publish",
                identity_id=identity_id,
                username=record.username,
                step=SyncStep.UPLOAD_SNAPSHOT.value,
                snapshot_cid=snapshot_cid,
            )

            return await self._link_and_commit(
                record, snapshot, snapshot_cid, signer, on_progress, skipped
            )

    async def relink(
        self,
        identity_id: str,
        orphan_cid: str,
        signer: Signer,
        on_progress: Optional[ProgressCallback] = None,
    ) -> PublishResult:
        """Point the ledger at an already uploaded snapshot, without uploading again."""
        async with self.saga_lock.hold(identity_id):
            await self._emit(on_progress, SyncStep.FETCH_SNAPSHOT)
            record = await self.repository.get_identity(identity_id)
            self._require_wallet(record)
            snapshot = await self._load_snapshot(orphan_cid)
            log_sync_operation(
                "relink",
                identity_id=identity_id,
                username=record.username,
                snapshot_cid=orphan_cid,
            )
            return await self._link_and_commit(record, snapshot, orphan_cid, signer, on_progress, [])

    async def _pack_changed_images(self, snapshot: Snapshot) -> Tuple[Snapshot, List[str]]:
        """
        Pack every image that only exists locally.

        Returns the snapshot with packed images addressed by batch, and the
        names of images that could not be fetched (left unchanged).
        """
        sources: List[Tuple[str, ImageRef]] = []
        if snapshot.profile.avatar and not snapshot.profile.avatar.is_published:
            sources.append((AVATAR_IMAGE_NAME, snapshot.profile.avatar))
        for project in snapshot.projects:
            for index, image in enumerate(project.images):
                if not image.is_published:
                    sources.append((image_name(project.id, index), image))

        if not sources:
            return snapshot, []

        packed: Dict[str, Tuple[str, str]] = {}
        skipped: List[str] = []
        for start in range(0, len(sources), self.packer.max_items):
            chunk = sources[start:start + self.packer.max_items]
            result = await self.packer.pack_sources(chunk, self.media.fetch_bytes)
            skipped.extend(result.dropped)
            for patch in result.patches:
                packed[patch.name] = (result.batch_id, patch.patch_id)

        logger.info(f"Packed {len(packed)} images, skipped {len(skipped)}")

        def _addressed(image: ImageRef, name: str) -> ImageRef:
            if name not in packed:
                return image
            batch_id, patch_id = packed[name]
            return image.model_copy(update={"batch_id": batch_id, "patch_id": patch_id})

        projects: List[Project] = []
        for project in snapshot.projects:
            names = [image_name(project.id, index) for index in range(len(project.images))]
            update = {
                "images": [_addressed(image, name) for image, name in zip(project.images, names)]
            }
            batch_ids = [packed[name][0] for name in names if name in packed]
            if batch_ids:
                update["batch_id"] = batch_ids[-1]
            projects.append(project.model_copy(update=update))

        avatar = snapshot.profile.avatar
        if avatar is not None:
            avatar = _addressed(avatar, AVATAR_IMAGE_NAME)

        return (
            snapshot.model_copy(
                update={
                    "projects": projects,
                    "profile": snapshot.profile.model_copy(update={"avatar": avatar}),
                }
            ),
            skipped,
        )

    async def _link_and_commit(
        self,
        record: IdentityRecord,
        snapshot: Snapshot,
        snapshot_cid: str,
        signer: Signer,
        on_progress: Optional[ProgressCallback],
        skipped: List[str],
    ) -> PublishResult:
        wallet = self._require_wallet(record)

        handle = record.pointer_handle or await self.registry.resolve_handle(record.username)
        if handle:
            unsigned = await self.registry.build_update_transition(
                handle, snapshot_cid, wallet, username=record.username
            )
        else:
            unsigned = await self.registry.build_register_transition(
                record.username, snapshot_cid, wallet
            )

        await self._emit(
            on_progress, SyncStep.BUILD_AND_SIGN, SyncStatus.AWAITING_SIGNATURE, unsigned
        )
        try:
            signed_transaction = await signer.sign(unsigned)
        except SignerRejectedError as e:
            logger.warning(f"Signer refused transition for {record.id}: {e.message}")
            raise TransitionRejectedError(
                e.message, {**e.details, "orphan_cid": snapshot_cid}
            ) from e

        await self._emit(on_progress, SyncStep.SUBMIT)
        try:
            confirmation = await self.registry.submit(unsigned, signed_transaction)
        except TransitionRejectedError as e:
            logger.warning(f"Transition rejected for {record.id}: {e.message}")
            raise TransitionRejectedError(
                e.message, {**e.details, "orphan_cid": snapshot_cid}
            ) from e

        await self._emit(on_progress, SyncStep.COMMIT)
        await self._commit(record.id, snapshot, confirmation)

        log_sync_operation(
            "publish",
            identity_id=record.id,
            username=record.username,
            step=SyncStep.COMMIT.value,
            snapshot_cid=confirmation.snapshot_cid,
            tx_hash=confirmation.tx_hash,
        )
        return PublishResult(
            status=SyncStatus.SUCCESS,
            snapshot_cid=confirmation.snapshot_cid,
            pointer_handle=confirmation.handle,
            tx_hash=confirmation.tx_hash,
            skipped_images=skipped,
        )

    async def _commit(self, identity_id: str, snapshot: Snapshot, confirmation: Confirmation) -> None:
        """
        Write a confirmed snapshot into the record, retrying until it succeeds.

        The record is re-read on every attempt so edits made while waiting for
        the signature survive. Projects marked for deletion that the snapshot
        left out are dropped for good.
        """
        published_ids = {project.id for project in snapshot.projects}
        attempt = 0
        delay = self.commit_backoff

        while True:
            attempt += 1
            try:
                current = await self.repository.get_identity(identity_id)
                merged = merge_pulled_snapshot(current, snapshot)
                projects = [
                    project
                    for project in merged.projects
                    if not (project.pending_deletion and project.id not in published_ids)
                ]
                fields = record_fields(merged.model_copy(update={"projects": projects}))
                fields["snapshot_cid"] = confirmation.snapshot_cid
                fields["pointer_handle"] = confirmation.handle
                await self.repository.update_identity(identity_id, fields)
                return
            except (RecordWriteFailedError, StoreUnavailableError) as e:
                logger.error(
                    f"Commit of confirmed snapshot failed for identity {identity_id} "
                    f"(cid={confirmation.snapshot_cid}, attempt {attempt}): {e.message}"
                )
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.commit_max_backoff)

    # Pull and diff

    async def pull(
        self,
        identity_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> PullResult:
        """
        Overwrite the record from its published snapshot.

        Projects marked for deletion locally stay marked, and local projects
        that were never published are kept.

        Raises:
            NotPublishedError: No handle or no pointer for this identity
            BlobNotFoundError: The pointed snapshot is gone from the store
        """
        async with self.saga_lock.hold(identity_id):
            await self._emit(on_progress, SyncStep.RESOLVE_POINTER)
            record = await self.repository.get_identity(identity_id)
            handle = record.pointer_handle or await self.registry.resolve_handle(record.username)
            if not handle:
                raise NotPublishedError(record.username)
            snapshot_cid = await self.registry.read_pointer(handle)
            if not snapshot_cid:
                raise NotPublishedError(record.username, {"handle": handle})

            await self._emit(on_progress, SyncStep.FETCH_SNAPSHOT)
            snapshot = await self._load_snapshot(snapshot_cid)

            await self._emit(on_progress, SyncStep.MERGE_SNAPSHOT)
            merged = merge_pulled_snapshot(record, snapshot)
            fields = record_fields(merged)
            fields["snapshot_cid"] = snapshot_cid
            fields["pointer_handle"] = handle
            await self.repository.update_identity(identity_id, fields)

            log_sync_operation(
                "pull",
                identity_id=identity_id,
                username=record.username,
                snapshot_cid=snapshot_cid,
            )
            return PullResult(
                snapshot_cid=snapshot_cid,
                pointer_handle=handle,
                project_count=len(merged.projects),
                preserved_pending_deletions=[
                    project.id for project in merged.projects if project.pending_deletion
                ],
            )

    async def diff(self, identity_id: str) -> DiffResult:
        """Compare the record with its published snapshot."""
        record = await self.repository.get_identity(identity_id)
        if not record.snapshot_cid:
            return DiffResult(has_differences=True, published=False)

        snapshot = await self._load_snapshot(record.snapshot_cid)
        return DiffResult(
            has_differences=diff_snapshot(record, snapshot),
            published=True,
            snapshot_cid=record.snapshot_cid,
        )

    # Binding maintenance

    async def unbind(self, identity_id: str, acting_wallet: Optional[str] = None) -> None:
        """
        Detach the record from the published tier and from its wallet.

        Published blobs stay in the store; only the record's references go.

        Raises:
            NotPublishedError: The record holds no snapshot or pointer to detach from
        """
        async with self.saga_lock.hold(identity_id):
            record = await self.repository.get_identity(identity_id)
            if not record.snapshot_cid and not record.pointer_handle:
                raise NotPublishedError(record.username)
            stripped = strip_published_addressing(record)
            fields = record_fields(stripped)
            fields.update(snapshot_cid=None, pointer_handle=None, wallet_address=None)
            await self.repository.update_identity(identity_id, fields, acting_wallet=acting_wallet)

            log_sync_operation(
                "unbind",
                identity_id=identity_id,
                username=record.username,
                snapshot_cid=record.snapshot_cid,
            )

    async def acknowledge_expired(self, identity_id: str) -> None:
        """
        Revert to record-only mode once the published snapshot is gone.

        Raises:
            ValidationError: If the snapshot is still retrievable
        """
        async with self.saga_lock.hold(identity_id):
            record = await self.repository.get_identity(identity_id)
            if not record.snapshot_cid:
                return

            try:
                await self.blob_store.get(record.snapshot_cid)
            except BlobNotFoundError:
                await self.repository.update_identity(
                    identity_id, {"snapshot_cid": None, "pointer_handle": None}
                )
                log_sync_operation(
                    "expire",
                    identity_id=identity_id,
                    username=record.username,
                    snapshot_cid=record.snapshot_cid,
                )
                return

            raise ValidationError(
                "Published snapshot is still available",
                {"snapshot_cid": record.snapshot_cid},
            )


# Global reconciliation service instance
reconciliation_service = ReconciliationService()
