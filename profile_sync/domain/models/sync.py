"""
Models describing sync sagas: steps, progress, ledger transitions and results.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SyncStep(str, Enum):
    """Progress steps the UI may render."""

    # Publish saga, in order
    ASSEMBLE_SNAPSHOT = "AssembleSnapshot"
    PACK_CHANGED_IMAGES = "PackChangedImages"
    UPLOAD_SNAPSHOT = "UploadSnapshot"
    BUILD_AND_SIGN = "BuildAndSign"
    SUBMIT = "Submit"
    COMMIT = "Commit"

    # Pull
    RESOLVE_POINTER = "ResolvePointer"
    FETCH_SNAPSHOT = "FetchSnapshot"
    MERGE_SNAPSHOT = "MergeSnapshot"


PUBLISH_STEPS = [
    SyncStep.ASSEMBLE_SNAPSHOT,
    SyncStep.PACK_CHANGED_IMAGES,
    SyncStep.UPLOAD_SNAPSHOT,
    SyncStep.BUILD_AND_SIGN,
    SyncStep.SUBMIT,
    SyncStep.COMMIT,
]

STEP_LABELS: Dict[SyncStep, str] = {
    SyncStep.ASSEMBLE_SNAPSHOT: "Preparing profile data...",
    SyncStep.PACK_CHANGED_IMAGES: "Packing new images...",
    SyncStep.UPLOAD_SNAPSHOT: "Uploading snapshot to IPFS...",
    SyncStep.BUILD_AND_SIGN: "Please sign the transaction in your wallet...",
    SyncStep.SUBMIT: "Submitting transaction to the registry...",
    SyncStep.COMMIT: "Saving to database...",
    SyncStep.RESOLVE_POINTER: "Reading on-chain pointer...",
    SyncStep.FETCH_SNAPSHOT: "Fetching snapshot from IPFS...",
    SyncStep.MERGE_SNAPSHOT: "Merging snapshot into your profile...",
}


class SyncStatus(str, Enum):
    """Saga status."""

    RUNNING = "running"
    AWAITING_SIGNATURE = "awaiting_signature"
    SUCCESS = "success"
    FAILED = "failed"


class TransitionKind(str, Enum):
    """Kind of pointer transition."""

    REGISTER = "register"
    UPDATE = "update"


class UnsignedTransition(BaseModel):
    """A pointer state transition waiting for an external signature."""

    kind: TransitionKind = Field(..., description="Register (first publish) or update")
    username: str = Field(..., description="Identity username")
    handle: Optional[str] = Field(None, description="Existing registry handle for updates")
    snapshot_cid: str = Field(..., description="CID the pointer will name")
    signer: str = Field(..., description="Address expected to sign")
    tx: Dict[str, Any] = Field(..., description="Unsigned EVM transaction fields")


class Confirmation(BaseModel):
    """Proof that the pointer now names the new snapshot."""

    tx_hash: str
    block_number: int
    handle: str
    snapshot_cid: str


class PatchRef(BaseModel):
    """Per-item reference inside a batch."""

    name: str
    patch_id: str


class PackResult(BaseModel):
    """Outcome of packing a set of named payloads."""

    batch_id: Optional[str] = Field(None, description="Batch CID, None when nothing was packed")
    patches: List[PatchRef] = Field(default_factory=list)
    dropped: List[str] = Field(default_factory=list, description="Names that could not be prepared")

    def patch_for(self, name: str) -> Optional[str]:
        for patch in self.patches:
            if patch.name == name:
                return patch.patch_id
        return None


class ProgressEvent(BaseModel):
    """One progress notification emitted by a saga."""

    step: SyncStep
    status: SyncStatus
    label: str
    unsigned_transition: Optional[UnsignedTransition] = None


class PublishResult(BaseModel):
    """Terminal outcome of a publish or relink saga."""

    status: SyncStatus
    snapshot_cid: Optional[str] = None
    pointer_handle: Optional[str] = None
    tx_hash: Optional[str] = None
    skipped_images: List[str] = Field(default_factory=list)
    orphan_cid: Optional[str] = Field(
        None, description="Uploaded but unlinked snapshot CID, reusable by relink"
    )
    failed_step: Optional[SyncStep] = None
    error_code: Optional[str] = None
    reason: Optional[str] = None


class PullResult(BaseModel):
    """Outcome of a pull."""

    snapshot_cid: str
    pointer_handle: str
    project_count: int
    preserved_pending_deletions: List[str] = Field(default_factory=list)


class DiffResult(BaseModel):
    """Outcome of comparing the record with its published snapshot."""

    has_differences: bool
    published: bool
    snapshot_cid: Optional[str] = None
