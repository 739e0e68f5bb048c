"""
Pointer Registry Client.
Reads and moves the on-chain pointer from an identity handle to its current snapshot CID.
"""

from typing import Any, Dict, Optional

from eth_utils import to_checksum_address

from profile_sync.core.config import settings
from profile_sync.core.exceptions import (
    BlockchainError,
    TransitionRejectedError,
    ValidationError,
)
from profile_sync.core.logging import get_logger, log_blockchain_transaction
from profile_sync.domain.models.sync import Confirmation, TransitionKind, UnsignedTransition
from profile_sync.infrastructure.blockchain.contract_client import ContractClient
from profile_sync.infrastructure.blockchain.registry_abi import (
    REGISTRY_ABI,
    register_calldata,
    update_snapshot_calldata,
)
from profile_sync.infrastructure.blockchain.signature_utils import (
    decode_signed_transaction,
    recover_sender,
)

logger = get_logger(__name__)


class PointerRegistry:
    """Client for the ProfileRegistry contract. Only pointer reads and writes are supported."""

    def __init__(
        self,
        contract_client: Optional[ContractClient] = None,
        chain_id: Optional[int] = None,
        default_gas: Optional[int] = None,
        receipt_timeout: Optional[int] = None,
    ):
        self.contract_client = contract_client
        self.chain_id = chain_id or settings.EVM_CHAIN_ID
        self.default_gas = default_gas or settings.REGISTRY_DEFAULT_GAS
        self.receipt_timeout = receipt_timeout or settings.TX_RECEIPT_TIMEOUT_SECONDS

    def _get_contract_client(self) -> ContractClient:
        """Get or create the registry contract client."""
        if not self.contract_client:
            if not settings.REGISTRY_ADDRESS:
                raise BlockchainError("REGISTRY_ADDRESS not configured")
            self.contract_client = ContractClient(
                contract_address=settings.REGISTRY_ADDRESS, abi=REGISTRY_ABI
            )
        return self.contract_client

    async def resolve_handle(self, username: str) -> Optional[str]:
        """Return the registry handle for a username, or None if it was never registered."""
        handle = await self._get_contract_client().call_function("getHandleByUsername", [username])
        if not handle:
            return None
        return str(handle)

    async def read_pointer(self, handle: str) -> Optional[str]:
        """Return the snapshot CID a handle currently points at, or None."""
        cid = await self._get_contract_client().call_function("getSnapshot", [int(handle)])
        return cid or None

    async def _build_transition(
        self,
        kind: TransitionKind,
        signer: str,
        data: str,
        username: str,
        snapshot_cid: str,
        handle: Optional[str] = None,
    ) -> UnsignedTransition:
        client = self._get_contract_client()
        signer = to_checksum_address(signer)

        transaction: Dict[str, Any] = {
            "from": signer,
            "to": client.contract_address,
            "data": data,
            "value": 0,
            "chainId": self.chain_id,
            "nonce": await client.get_transaction_count(signer),
            "gasPrice": await client.get_gas_price(),
        }
        transaction["gas"] = await client.estimate_gas(transaction, self.default_gas)

        logger.info(f"Built {kind.value} transition for {username} -> {snapshot_cid}")
        return UnsignedTransition(
            kind=kind,
            username=username,
            handle=handle,
            snapshot_cid=snapshot_cid,
            signer=signer,
            tx=transaction,
        )

    async def build_register_transition(
        self, username: str, snapshot_cid: str, signer: str
    ) -> UnsignedTransition:
        """Build the first-publish transition registering a username with its snapshot."""
        return await self._build_transition(
            TransitionKind.REGISTER,
            signer,
            register_calldata(username, snapshot_cid),
            username,
            snapshot_cid,
        )

    async def build_update_transition(
        self, handle: str, snapshot_cid: str, signer: str, username: str = ""
    ) -> UnsignedTransition:
        """Build the transition moving an existing handle to a new snapshot."""
        return await self._build_transition(
            TransitionKind.UPDATE,
            signer,
            update_snapshot_calldata(int(handle), snapshot_cid),
            username,
            snapshot_cid,
            handle=handle,
        )

    def _check_signed_matches(
        self, unsigned: UnsignedTransition, signed_transaction: str, rejection: Dict[str, Any]
    ) -> None:
        """Reject a signed transaction that is not the transition handed out for signing."""
        try:
            sender = recover_sender(signed_transaction)
            decoded = decode_signed_transaction(signed_transaction)
        except ValidationError as e:
            raise TransitionRejectedError(e.message, {**rejection, **e.details}) from e

        if sender.lower() != str(unsigned.tx.get("from", "")).lower():
            raise TransitionRejectedError(
                "Signed transaction sender does not match the transition",
                {**rejection, "expected": unsigned.tx.get("from"), "sender": sender},
            )

        expected = {
            "to": str(unsigned.tx.get("to", "")).lower(),
            "data": str(unsigned.tx.get("data", "")).lower(),
            "nonce": unsigned.tx.get("nonce"),
            "chainId": unsigned.tx.get("chainId"),
        }
        actual = {
            "to": (decoded["to"] or "").lower(),
            "data": decoded["data"].lower(),
            "nonce": decoded["nonce"],
            "chainId": decoded["chainId"],
        }
        mismatched = sorted(field for field in expected if expected[field] != actual[field])
        if mismatched:
            raise TransitionRejectedError(
                "Signed transaction does not match the transition",
                {**rejection, "mismatched_fields": mismatched},
            )

    async def submit(self, unsigned: UnsignedTransition, signed_transaction: str) -> Confirmation:
        """
        Submit a signed transition and wait for it to be mined.

        Args:
            unsigned: The transition that was handed out for signing
            signed_transaction: 0x-prefixed signed raw transaction from the wallet

        Returns:
            Confirmation naming the handle and snapshot CID

        Raises:
            TransitionRejectedError: Wrong signer, a signed call other than the
                transition, send failure, timeout, reverted transaction, or a pointer
                that does not name the snapshot after mining. Never retried here.
                A receipt timeout carries details["reason"] == "receipt_timeout"
                because that transaction may still be mined.
        """
        client = self._get_contract_client()
        rejection = {"snapshot_cid": unsigned.snapshot_cid, "kind": unsigned.kind.value}

        self._check_signed_matches(unsigned, signed_transaction, rejection)

        try:
            tx_hash = await client.send_raw_transaction(bytes.fromhex(signed_transaction.removeprefix("0x")))
            receipt = await client.wait_for_receipt(tx_hash, self.receipt_timeout)
        except BlockchainError as e:
            raise TransitionRejectedError(e.message, {**rejection, **e.details}) from e

        if receipt.get("status") != 1:
            raise TransitionRejectedError(
                "Registry transaction reverted", {**rejection, "tx_hash": tx_hash}
            )

        handle = unsigned.handle
        if unsigned.kind == TransitionKind.REGISTER:
            handle = await self.resolve_handle(unsigned.username)
            if handle is None:
                raise BlockchainError(
                    "Registration mined but no handle is registered for the username",
                    {"username": unsigned.username, "tx_hash": tx_hash},
                )

        pointer = await self.read_pointer(handle)
        if pointer != unsigned.snapshot_cid:
            raise TransitionRejectedError(
                "Registry pointer does not name the submitted snapshot",
                {**rejection, "tx_hash": tx_hash, "handle": handle, "pointer": pointer},
            )

        block_number = int(receipt.get("blockNumber") or 0)
        log_blockchain_transaction(
            tx_hash=tx_hash,
            chain_id=self.chain_id,
            contract_address=client.contract_address,
            method=unsigned.kind.value,
            block_number=block_number,
            handle=handle,
            snapshot_cid=unsigned.snapshot_cid,
        )

        return Confirmation(
            tx_hash=tx_hash,
            block_number=block_number,
            handle=handle,
            snapshot_cid=unsigned.snapshot_cid,
        )


# Global pointer registry instance
pointer_registry = PointerRegistry()
