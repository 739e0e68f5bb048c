"""
Sync Router.
Publish, pull, diff and binding maintenance for the session's identity.
"""

from fastapi import APIRouter, Depends, status

from profile_sync.api.deps.session_guard import AuthenticatedUser, get_current_user
from profile_sync.api.dto.sync_dto import (
    DiffResponseDTO,
    PullResponseDTO,
    RelinkRequestDTO,
    SignatureRequestDTO,
    SyncResponseDTO,
)
from profile_sync.api.services.reconciliation_service import reconciliation_service
from profile_sync.api.services.signature_broker import signature_broker
from profile_sync.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.post("/publish", response_model=SyncResponseDTO, status_code=status.HTTP_202_ACCEPTED)
async def publish(
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> SyncResponseDTO:
    """
    Start publishing the profile.

    The saga runs in the background. Poll /publish/status; when it reports
    awaiting_signature, sign the returned transaction in the wallet and post
    it to /publish/signature.
    """
    identity_id = current_user.user_id
    logger.info(f"Publish requested for identity {identity_id}")

    session = signature_broker.start(
        identity_id,
        lambda signer, on_progress: reconciliation_service.publish(identity_id, signer, on_progress),
    )
    return SyncResponseDTO(
        success=True,
        statusCode=status.HTTP_202_ACCEPTED,
        message="Publish started",
        data=session.model_dump(mode="json"),
    )


@router.post("/publish/relink", response_model=SyncResponseDTO, status_code=status.HTTP_202_ACCEPTED)
async def relink(
    request: RelinkRequestDTO,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> SyncResponseDTO:
    """Retry linking a snapshot uploaded by a publish whose transition was rejected."""
    identity_id = current_user.user_id
    logger.info(f"Relink of {request.orphan_cid} requested for identity {identity_id}")

    session = signature_broker.start(
        identity_id,
        lambda signer, on_progress: reconciliation_service.relink(
            identity_id, request.orphan_cid, signer, on_progress
        ),
    )
    return SyncResponseDTO(
        success=True,
        statusCode=status.HTTP_202_ACCEPTED,
        message="Relink started",
        data=session.model_dump(mode="json"),
    )


@router.get("/publish/status", response_model=SyncResponseDTO)
async def publish_status(
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> SyncResponseDTO:
    """Current step, status, pending transition and result of the latest publish."""
    session = signature_broker.get_session(current_user.user_id)
    if session is None:
        return SyncResponseDTO(success=True, message="No publish has been started", data=None)
    return SyncResponseDTO(
        success=True,
        message=session.label or session.status.value,
        data=session.model_dump(mode="json"),
    )


@router.post("/publish/signature", response_model=SyncResponseDTO)
async def publish_signature(
    request: SignatureRequestDTO,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> SyncResponseDTO:
    """Answer the pending transition with a signed transaction or a rejection."""
    if request.rejected:
        signature_broker.reject(current_user.user_id)
        return SyncResponseDTO(success=True, message="Transition rejected")

    signature_broker.provide_signature(current_user.user_id, request.signed_transaction)
    return SyncResponseDTO(success=True, message="Signature accepted")


@router.post("/pull", response_model=PullResponseDTO)
async def pull(
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> PullResponseDTO:
    """Overwrite the profile from its published snapshot."""
    result = await reconciliation_service.pull(current_user.user_id)
    return PullResponseDTO(success=True, message="Profile pulled from published snapshot", data=result)


@router.get("/diff", response_model=DiffResponseDTO)
async def diff(
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> DiffResponseDTO:
    """Whether the profile has changes that are not published yet."""
    result = await reconciliation_service.diff(current_user.user_id)
    message = "Profile has unpublished changes" if result.has_differences else "Profile is up to date"
    return DiffResponseDTO(success=True, message=message, data=result)


@router.post("/unbind", response_model=SyncResponseDTO)
async def unbind(
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> SyncResponseDTO:
    """Detach the profile from its published snapshot and wallet."""
    await reconciliation_service.unbind(
        current_user.user_id, acting_wallet=current_user.wallet_address
    )
    return SyncResponseDTO(success=True, message="Profile unbound")


@router.post("/acknowledge-expired", response_model=SyncResponseDTO)
async def acknowledge_expired(
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> SyncResponseDTO:
    """Return to record-only mode after the published snapshot expired."""
    await reconciliation_service.acknowledge_expired(current_user.user_id)
    return SyncResponseDTO(success=True, message="Expired snapshot acknowledged")
