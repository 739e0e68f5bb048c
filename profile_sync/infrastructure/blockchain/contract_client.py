"""
Contract Client for smart contract interactions.
Wraps the blocking Web3 calls the registry needs and runs them off the event loop.
"""

import asyncio
from typing import Any, Dict, List, Optional

from web3 import Web3
from web3.contract import Contract
from web3.exceptions import TimeExhausted, Web3Exception

from profile_sync.core.config import settings
from profile_sync.core.exceptions import BlockchainError
from profile_sync.core.logging import get_logger

logger = get_logger(__name__)

# Errors raised by providers and contract calls that mean "the chain said no or could not be reached"
CHAIN_ERRORS = (Web3Exception, ValueError, ConnectionError, TimeoutError, OSError)

# The transaction was sent but its outcome is unknown; it may still be mined
RECEIPT_TIMEOUT = "receipt_timeout"


class ContractClient:
    """Client for interacting with smart contracts."""

    def __init__(self, contract_address: str, abi: List[Dict], w3: Optional[Web3] = None):
        """
        Initialize contract client.

        Args:
            contract_address: Contract address
            abi: Contract ABI
            w3: Web3 instance (built from the configured RPC URL when omitted)
        """
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.abi = abi

        if w3 is None:
            rpc_url = settings.ACTIVE_RPC_URL
            w3 = Web3(Web3.HTTPProvider(rpc_url))
            logger.info(f"Connecting to RPC: {rpc_url}")
            if not w3.is_connected():
                logger.error("Failed to connect to Web3 provider")
                raise BlockchainError("Cannot connect to blockchain RPC", {"rpc_url": rpc_url})
        self.w3 = w3

        self.contract: Contract = self.w3.eth.contract(address=self.contract_address, abi=self.abi)

        logger.info(f"Contract client initialized for {self.contract_address}")

    async def call_function(self, function_name: str, args: List[Any]) -> Any:
        """
        Call a read-only contract function.

        Raises:
            BlockchainError: If the call fails
        """
        contract_function = getattr(self.contract.functions, function_name)
        try:
            result = await asyncio.to_thread(contract_function(*args).call)
        except CHAIN_ERRORS as e:
            logger.error(f"Error calling function {function_name}: {e}")
            raise BlockchainError(
                f"Contract call {function_name} failed", {"error": str(e)}
            ) from e

        logger.debug(f"Called function: {function_name}({args}) = {result}")
        return result

    async def get_transaction_count(self, address: str) -> int:
        try:
            return await asyncio.to_thread(self.w3.eth.get_transaction_count, address)
        except CHAIN_ERRORS as e:
            raise BlockchainError("Failed to read nonce", {"address": address, "error": str(e)}) from e

    async def get_gas_price(self) -> int:
        try:
            return await asyncio.to_thread(lambda: self.w3.eth.gas_price)
        except CHAIN_ERRORS as e:
            raise BlockchainError("Failed to read gas price", {"error": str(e)}) from e

    async def estimate_gas(self, transaction: Dict[str, Any], default_gas: int) -> int:
        """Estimate gas with a 20% buffer, falling back to default_gas."""
        try:
            estimate = await asyncio.to_thread(self.w3.eth.estimate_gas, transaction)
        except CHAIN_ERRORS as e:
            logger.warning(f"Gas estimation failed: {e}, using default")
            return default_gas
        return int(estimate * 1.2)

    async def send_raw_transaction(self, raw_transaction: bytes) -> str:
        """
        Broadcast a signed transaction.

        Returns:
            0x-prefixed transaction hash
        """
        try:
            tx_hash = await asyncio.to_thread(self.w3.eth.send_raw_transaction, raw_transaction)
        except CHAIN_ERRORS as e:
            logger.error(f"Error sending transaction: {e}")
            raise BlockchainError("Failed to send transaction", {"error": str(e)}) from e

        tx_hash_hex = "0x" + bytes(tx_hash).hex()
        logger.info(f"Transaction sent: {tx_hash_hex}")
        return tx_hash_hex

    async def wait_for_receipt(self, tx_hash: str, timeout: int) -> Dict[str, Any]:
        """
        Wait for a transaction receipt.

        Raises:
            BlockchainError: On timeout or provider failure
        """
        try:
            receipt = await asyncio.to_thread(
                self.w3.eth.wait_for_transaction_receipt, tx_hash, timeout=timeout
            )
        except TimeExhausted as e:
            raise BlockchainError(
                "Timed out waiting for transaction receipt",
                {"tx_hash": tx_hash, "timeout": timeout, "reason": RECEIPT_TIMEOUT},
            ) from e
        except CHAIN_ERRORS as e:
            raise BlockchainError(
                "Failed to read transaction receipt", {"tx_hash": tx_hash, "error": str(e)}
            ) from e

        logger.info(f"Transaction mined: {tx_hash} status={receipt.get('status')}")
        return dict(receipt)
