"""
ProfileRegistry contract interface.

The registry maps username -> handle -> current snapshot CID. Handle 0 means
the username has never been registered.
"""

from typing import Any, Dict, List, Sequence

from eth_abi import encode as abi_encode
from eth_utils import function_signature_to_4byte_selector

REGISTRY_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [{"internalType": "string", "name": "username", "type": "string"}],
        "name": "getHandleByUsername",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "uint256", "name": "handle", "type": "uint256"}],
        "name": "getSnapshot",
        "outputs": [{"internalType": "string", "name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "string", "name": "username", "type": "string"},
            {"internalType": "string", "name": "snapshotCid", "type": "string"},
        ],
        "name": "register",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "uint256", "name": "handle", "type": "uint256"},
            {"internalType": "string", "name": "snapshotCid", "type": "string"},
        ],
        "name": "updateSnapshot",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

REGISTER_SIGNATURE = "register(string,string)"
UPDATE_SNAPSHOT_SIGNATURE = "updateSnapshot(uint256,string)"


def selector_for(signature: str) -> bytes:
    """Return the 4-byte selector for a function signature."""
    return function_signature_to_4byte_selector(signature)


def encode_call(signature: str, arg_types: Sequence[str], args: Sequence[Any]) -> str:
    """Build 0x-prefixed calldata for a registry function."""
    return "0x" + (selector_for(signature) + abi_encode(list(arg_types), list(args))).hex()


def register_calldata(username: str, snapshot_cid: str) -> str:
    return encode_call(REGISTER_SIGNATURE, ["string", "string"], [username, snapshot_cid])


def update_snapshot_calldata(handle: int, snapshot_cid: str) -> str:
    return encode_call(UPDATE_SNAPSHOT_SIGNATURE, ["uint256", "string"], [handle, snapshot_cid])
