"""
Signature Broker.
Runs publish sagas in the background and parks them at the signing step until
the wallet posts a signed transaction (or a rejection) over HTTP.
"""

import asyncio
from typing import Awaitable, Callable, Dict, Optional

from pydantic import BaseModel

from profile_sync.core.exceptions import (
    ProfileSyncException,
    SagaInProgressError,
    SignerRejectedError,
    TransitionRejectedError,
    ValidationError,
)
from profile_sync.core.logging import get_logger, log_error
from profile_sync.domain.models.sync import (
    ProgressEvent,
    PublishResult,
    SyncStatus,
    SyncStep,
    UnsignedTransition,
)

logger = get_logger(__name__)


class PublishSession(BaseModel):
    """Observable state of the latest publish for one identity."""

    identity_id: str
    status: SyncStatus = SyncStatus.RUNNING
    step: Optional[SyncStep] = None
    label: Optional[str] = None
    unsigned_transition: Optional[UnsignedTransition] = None
    result: Optional[PublishResult] = None


class BrokerSigner:
    """Signer that waits for the wallet to answer through the broker."""

    def __init__(self, broker: "SignatureBroker", identity_id: str):
        self.broker = broker
        self.identity_id = identity_id

    async def sign(self, unsigned: UnsignedTransition) -> str:
        return await self.broker.wait_for_signature(self.identity_id)


SagaRunner = Callable[[BrokerSigner, Callable[[ProgressEvent], Awaitable[None]]], Awaitable[PublishResult]]


class SignatureBroker:
    """Holds pending transitions per identity and resumes sagas when signatures arrive."""

    def __init__(self):
        self._sessions: Dict[str, PublishSession] = {}
        self._pending: Dict[str, asyncio.Future] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    def get_session(self, identity_id: str) -> Optional[PublishSession]:
        return self._sessions.get(identity_id)

    def is_running(self, identity_id: str) -> bool:
        task = self._tasks.get(identity_id)
        return task is not None and not task.done()

    def start(self, identity_id: str, runner: SagaRunner) -> PublishSession:
        """
        Start a saga in the background.

        Raises:
            SagaInProgressError: A saga started here for this identity is still running
        """
        if self.is_running(identity_id):
            raise SagaInProgressError(identity_id)

        session = PublishSession(identity_id=identity_id)
        self._sessions[identity_id] = session
        self._tasks[identity_id] = asyncio.create_task(self._run(identity_id, runner))
        return session

    async def wait(self, identity_id: str) -> Optional[PublishSession]:
        """Wait for the background saga of an identity to finish."""
        task = self._tasks.get(identity_id)
        if task is not None:
            await asyncio.shield(task)
        return self._sessions.get(identity_id)

    async def _run(self, identity_id: str, runner: SagaRunner) -> None:
        session = self._sessions[identity_id]

        async def _on_progress(event: ProgressEvent) -> None:
            session.step = event.step
            session.status = event.status
            session.label = event.label
            session.unsigned_transition = event.unsigned_transition

        try:
            session.result = await runner(BrokerSigner(self, identity_id), _on_progress)
        except TransitionRejectedError as e:
            session.result = PublishResult(
                status=SyncStatus.FAILED,
                orphan_cid=e.orphan_cid,
                failed_step=session.step,
                error_code=e.error_code,
                reason=e.message,
            )
        except ProfileSyncException as e:
            session.result = PublishResult(
                status=SyncStatus.FAILED,
                failed_step=session.step,
                error_code=e.error_code,
                reason=e.message,
            )
        except Exception as e:
            log_error(e, {"identity_id": identity_id, "step": session.step})
            session.result = PublishResult(
                status=SyncStatus.FAILED,
                failed_step=session.step,
                error_code="INTERNAL_ERROR",
                reason=str(e),
            )
        finally:
            self._pending.pop(identity_id, None)

        session.status = session.result.status
        session.unsigned_transition = None
        logger.info(f"Saga for {identity_id} finished: {session.status.value}")

    async def wait_for_signature(self, identity_id: str) -> str:
        """Park the saga until provide_signature or reject is called. No timeout."""
        future = asyncio.get_running_loop().create_future()
        self._pending[identity_id] = future
        try:
            return await future
        finally:
            self._pending.pop(identity_id, None)

    def _pending_future(self, identity_id: str) -> asyncio.Future:
        future = self._pending.get(identity_id)
        if future is None or future.done():
            raise ValidationError(
                "No transition is awaiting a signature", {"identity_id": identity_id}
            )
        return future

    def provide_signature(self, identity_id: str, signed_transaction: str) -> None:
        self._pending_future(identity_id).set_result(signed_transaction)
        logger.info(f"Signature received for {identity_id}")

    def reject(self, identity_id: str) -> None:
        self._pending_future(identity_id).set_exception(
            SignerRejectedError("Wallet rejected the transition", {"identity_id": identity_id})
        )
        logger.info(f"Signature rejected for {identity_id}")


# Global broker instance
signature_broker = SignatureBroker()
