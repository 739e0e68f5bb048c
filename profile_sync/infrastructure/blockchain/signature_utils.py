"""
Signature utilities for pointer transitions.
"""

from typing import Any, Dict, Optional, Protocol, Union

import rlp
from eth_account import Account
from eth_utils import big_endian_to_int, to_bytes, to_checksum_address

from profile_sync.core.config import settings
from profile_sync.core.exceptions import SignerRejectedError, ValidationError
from profile_sync.core.logging import get_logger
from profile_sync.domain.models.sync import UnsignedTransition

logger = get_logger(__name__)


class Signer(Protocol):
    """Produces a signed raw transaction for an unsigned pointer transition."""

    async def sign(self, unsigned: UnsignedTransition) -> str:
        """Return the 0x-prefixed signed raw transaction, or raise SignerRejectedError."""
        ...


def recover_sender(signed_transaction: Union[str, bytes]) -> str:
    """
    Recover the checksummed sender address of a signed raw transaction.

    Raises:
        ValidationError: If the payload is not a valid signed transaction
    """
    try:
        return to_checksum_address(Account.recover_transaction(signed_transaction))
    except Exception as e:
        raise ValidationError(
            "Malformed signed transaction", {"error": str(e)}
        ) from e


# Positions of (chainId, nonce, to, data) in the RLP payload of each envelope type
_TYPED_FIELDS = {
    1: (0, 1, 4, 6),  # EIP-2930
    2: (0, 1, 5, 7),  # EIP-1559
}


def decode_signed_transaction(signed_transaction: Union[str, bytes]) -> Dict[str, Any]:
    """
    Decode the fields of a signed raw transaction that decide what it does on chain.

    Supports legacy (EIP-155), EIP-2930 and EIP-1559 envelopes.

    Returns:
        Dict with chainId (None for pre-EIP-155 legacy), nonce, to (checksummed,
        None for contract creation) and data (0x-prefixed hex)

    Raises:
        ValidationError: If the payload cannot be decoded
    """
    try:
        raw = to_bytes(hexstr=signed_transaction) if isinstance(signed_transaction, str) else bytes(signed_transaction)
        if raw and raw[0] < 0x7F:
            chain_pos, nonce_pos, to_pos, data_pos = _TYPED_FIELDS[raw[0]]
            fields = rlp.decode(raw[1:])
            chain_id = big_endian_to_int(fields[chain_pos])
        else:
            nonce_pos, to_pos, data_pos = 0, 3, 5
            fields = rlp.decode(raw)
            v = big_endian_to_int(fields[6])
            chain_id = (v - 35) // 2 if v >= 35 else None

        to = fields[to_pos]
        return {
            "chainId": chain_id,
            "nonce": big_endian_to_int(fields[nonce_pos]),
            "to": to_checksum_address(to) if to else None,
            "data": "0x" + bytes(fields[data_pos]).hex(),
        }
    except Exception as e:
        raise ValidationError(
            "Malformed signed transaction", {"error": str(e)}
        ) from e


class LocalKeySigner:
    """Signs transitions with a configured private key (operator and dev setups)."""

    def __init__(self, private_key: Optional[str] = None):
        key = private_key or settings.EVM_PRIVATE_KEY
        if not key:
            raise ValidationError("EVM_PRIVATE_KEY not configured")
        self._private_key = key
        self.address = Account.from_key(key).address

    async def sign(self, unsigned: UnsignedTransition) -> str:
        if unsigned.signer.lower() != self.address.lower():
            raise SignerRejectedError(
                "Transition is addressed to a different signer",
                {"expected": unsigned.signer, "signer": self.address},
            )

        transaction = dict(unsigned.tx)
        transaction.pop("from", None)
        signed = Account.sign_transaction(transaction, self._private_key)

        logger.info(f"Signed {unsigned.kind.value} transition for {unsigned.username} as {self.address}")
        return "0x" + bytes(signed.raw_transaction).hex()
