"""
Safe transaction hashing and signing.

The Safe contract verifies owner signatures against an EIP-712 hash of the
SafeTx struct. Every signer must derive that hash from the same inputs, so
the construction here mirrors ``Safe.getTransactionHash`` exactly:

    keccak256(0x1901 || domainSeparator || keccak256(abi.encode(
        SAFE_TX_TYPEHASH, to, value, keccak256(data), operation,
        safeTxGas=0, baseGas=0, gasPrice=0, gasToken=0x0, refundReceiver=0x0,
        nonce)))

Signatures are produced in the eth_sign style (prefixed message over the
32-byte hash), and the recovery byte is shifted by 4 so the Safe knows to
apply the prefix when recovering the owner.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from eth_abi import encode
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from eth_utils import keccak, to_bytes
from hexbytes import HexBytes
from web3 import Web3

from .constants import SAFE_TX_TYPE, ZERO_ADDRESS
from .exceptions import SignatureIntegrityError

SAFE_TX_TYPEHASH: bytes = keccak(text=SAFE_TX_TYPE)
EIP712_PREFIX = b"\x19\x01"
ETH_SIGN_V_OFFSET = 4

_SAFE_TX_ABI_TYPES = [
    "bytes32",
    "address",
    "uint256",
    "bytes32",
    "uint8",
    "uint256",
    "uint256",
    "uint256",
    "address",
    "address",
    "uint256",
]


@dataclass(frozen=True)
class SafeTransaction:
    """A Safe multi-sig transaction with gas refund fields fixed to zero."""

    to: str
    value: int
    data: bytes
    operation: int
    nonce: int

    @property
    def data_hex(self) -> str:
        return "0x" + self.data.hex()


def compute_safe_tx_hash(domain_separator: Union[bytes, str], tx: SafeTransaction) -> bytes:
    """Return the 32-byte EIP-712 hash the Safe expects owners to sign."""
    separator = HexBytes(domain_separator)
    encoded = encode(
        _SAFE_TX_ABI_TYPES,
        [
            SAFE_TX_TYPEHASH,
            Web3.to_checksum_address(tx.to),
            tx.value,
            keccak(tx.data),
            tx.operation,
            0,  # safeTxGas
            0,  # baseGas
            0,  # gasPrice
            ZERO_ADDRESS,  # gasToken
            ZERO_ADDRESS,  # refundReceiver
            tx.nonce,
        ],
    )
    return keccak(EIP712_PREFIX + bytes(separator) + keccak(encoded))


def adjust_signature_v(signature: Union[bytes, str]) -> bytes:
    """Shift the recovery byte of a 65-byte signature into the eth_sign range.

    0/1 style recovery ids are normalised to 27/28 first, then 4 is added.
    Anything that does not end up as 31 or 32 is rejected.
    """
    raw = bytearray(HexBytes(signature))
    if len(raw) != 65:
        raise SignatureIntegrityError(
            f"Expected a 65-byte signature, got {len(raw)} bytes"
        )
    original = raw[64]
    v = original
    if v < 27:
        v += 27
    v += ETH_SIGN_V_OFFSET
    if v not in (31, 32):
        raise SignatureIntegrityError(
            f"Unexpected signature v value after adjustment: {v} (original: {original})"
        )
    raw[64] = v
    return bytes(raw)


def sign_safe_tx_hash(account: LocalAccount, safe_tx_hash: Union[bytes, str]) -> str:
    """Sign a Safe tx hash with the agent key and return the 0x-prefixed signature."""
    hash_bytes = to_bytes(hexstr=safe_tx_hash) if isinstance(safe_tx_hash, str) else bytes(safe_tx_hash)
    signed = account.sign_message(encode_defunct(primitive=hash_bytes))
    return "0x" + adjust_signature_v(bytes(signed.signature)).hex()
