"""
Proposal engine: build, hash, sign and submit Safe transactions.

Every command is linear and never retried; a human operator simply runs it
again. Input validation happens before any network call.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Sequence, Union

from eth_abi import encode
from eth_account.signers.local import LocalAccount
from eth_utils import function_signature_to_4byte_selector, to_bytes
from web3 import Web3

from .chain import SafeReader
from .constants import MOR_TOKEN_ADDRESS, SAFE_APP_QUEUE_URL
from .exceptions import NonceConflictError, ValidationError
from .relay import ProposalRecord, RelayClient
from .safe_tx import SafeTransaction, compute_safe_tx_hash, sign_safe_tx_hash

HEX_DATA_RE = re.compile(r"^0x([0-9a-fA-F]{2})*$")
SAFE_TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
CALL_OPERATION = 0
SUPPORTED_OPERATIONS = (CALL_OPERATION,)
MAX_UINT256 = 2**256 - 1


def encode_call(signature: str, arg_types: Sequence[str], args: Sequence[object]) -> str:
    """ABI-encode a function call into 0x-prefixed calldata."""
    selector = function_signature_to_4byte_selector(signature)
    return Web3.to_hex(selector + encode(list(arg_types), list(args)))


@dataclass(frozen=True)
class ProposalResult:
    safe_tx_hash: str
    status: int
    queue_url: str


def validate_address(value: Optional[str], name: str = "--to") -> str:
    """Return the checksummed address or raise ValidationError."""
    if not value or not Web3.is_address(value):
        raise ValidationError(f"Invalid {name} address: {value!r}")
    return Web3.to_checksum_address(value)


def validate_hex_data(data: Optional[str]) -> bytes:
    data = data or "0x"
    if not HEX_DATA_RE.match(data):
        raise ValidationError(
            "Invalid --data format. Must be '0x' followed by an even number of hex characters "
            "(example: 0x or 0xa9059cbb000000...)"
        )
    return to_bytes(hexstr=data)


def parse_amount(amount: Union[str, int, Decimal, None]) -> int:
    """Parse a decimal ether-unit amount into wei; it must be > 0."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValidationError(f"--amount must be a decimal number, got {amount!r}") from None
    if not value.is_finite() or value <= 0:
        raise ValidationError("--amount must be greater than 0")
    try:
        wei = Web3.to_wei(value, "ether")
    except (ValueError, ArithmeticError):
        raise ValidationError(f"--amount is out of range: {amount!r}") from None
    if wei > MAX_UINT256:
        raise ValidationError(f"--amount is out of range: {amount!r}")
    if wei <= 0:
        raise ValidationError("--amount must be greater than 0")
    return int(wei)


def parse_wei(value: Union[str, int, None]) -> int:
    if value is None or value == "":
        return 0
    try:
        parsed = int(str(value), 0)
    except ValueError:
        raise ValidationError(f"--value must be an integer amount of wei, got {value!r}") from None
    if parsed < 0:
        raise ValidationError("--value must not be negative")
    if parsed > MAX_UINT256:
        raise ValidationError(f"--value does not fit in uint256: {value!r}")
    return parsed


def validate_threshold(value: Union[str, int, None], owner_count: int) -> int:
    try:
        threshold = int(str(value), 10)
    except (TypeError, ValueError):
        threshold = None
    if threshold is None or threshold < 1 or threshold > owner_count:
        raise ValidationError(f"Threshold must be a number between 1 and {owner_count}")
    return threshold


def validate_safe_tx_hash(value: Optional[str]) -> str:
    if not value:
        raise ValidationError("--hash required. Get it from the 'pending' command.")
    if not SAFE_TX_HASH_RE.match(value):
        raise ValidationError(f"Invalid Safe tx hash: {value!r}")
    return value


def ensure_no_nonce_conflict(nonce: int, pending: Sequence[ProposalRecord]) -> None:
    """Refuse to build a second transaction for a nonce already in the queue."""
    for record in pending:
        if record.nonce == nonce:
            raise NonceConflictError(nonce, record.safe_tx_hash, record.to, record.value)


class ProposalEngine:
    """Proposes Safe transactions signed by the agent key."""

    def __init__(
        self,
        safe: SafeReader,
        relay: RelayClient,
        account: Optional[LocalAccount] = None,
        mor_token: str = MOR_TOKEN_ADDRESS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._safe = safe
        self._relay = relay
        self._account = account
        self._mor_token = Web3.to_checksum_address(mor_token)
        self._logger = logger or logging.getLogger("proposal_engine")

    @property
    def safe_address(self) -> str:
        return self._safe.address

    @property
    def queue_url(self) -> str:
        return SAFE_APP_QUEUE_URL.format(safe=self.safe_address)

    def _require_account(self) -> LocalAccount:
        if self._account is None:
            raise ValidationError("This command needs the agent signing key")
        return self._account

    async def propose(
        self,
        to: Optional[str],
        value: Union[str, int, None] = 0,
        data: Optional[str] = "0x",
        operation: int = CALL_OPERATION,
    ) -> ProposalResult:
        """Propose a raw transaction from the Safe."""
        target = validate_address(to)
        data_bytes = validate_hex_data(data)
        wei = parse_wei(value)
        if operation not in SUPPORTED_OPERATIONS:
            raise ValidationError(f"Unsupported operation {operation!r}")
        account = self._require_account()

        nonce, domain_separator, pending = await asyncio.gather(
            self._safe.nonce(),
            self._safe.domain_separator(),
            self._relay.list_pending(self.safe_address),
        )
        ensure_no_nonce_conflict(nonce, pending)

        tx = SafeTransaction(
            to=target, value=wei, data=data_bytes, operation=operation, nonce=nonce
        )
        safe_tx_hash = Web3.to_hex(compute_safe_tx_hash(domain_separator, tx))
        signature = sign_safe_tx_hash(account, safe_tx_hash)

        self._logger.info("Safe TX hash: %s", safe_tx_hash)
        self._logger.info("Submitting to Transaction Service...")
        status = await self._relay.propose(
            self.safe_address, tx, safe_tx_hash, signature, account.address
        )
        self._logger.info(
            "Submitted (%s). Waiting for co-signatures in Safe Wallet app.", status
        )
        self._logger.info("  View: %s", self.queue_url)
        return ProposalResult(safe_tx_hash=safe_tx_hash, status=status, queue_url=self.queue_url)

    async def propose_transfer(
        self, token: Optional[str], to: Optional[str], amount: Union[str, int, Decimal, None]
    ) -> ProposalResult:
        """Propose an ETH or MOR transfer out of the Safe."""
        symbol = (token or "").upper()
        recipient = validate_address(to)
        wei = parse_amount(amount)

        if symbol == "ETH":
            self._logger.info(
                "Proposing: Transfer %s ETH to %s", Web3.from_wei(wei, "ether"), recipient
            )
            return await self.propose(recipient, wei, "0x")
        if symbol == "MOR":
            calldata = encode_call(
                "transfer(address,uint256)", ["address", "uint256"], [recipient, wei]
            )
            self._logger.info(
                "Proposing: Transfer %s MOR to %s", Web3.from_wei(wei, "ether"), recipient
            )
            return await self.propose(self._mor_token, 0, calldata)
        raise ValidationError(f'Unknown token "{symbol}". Use --token MOR or --token ETH')

    async def propose_threshold(self, value: Union[str, int, None]) -> ProposalResult:
        """Propose changing the Safe's signature threshold."""
        if value is None or value == "":
            raise ValidationError("--value required (new threshold number)")
        owners, current = await asyncio.gather(self._safe.owners(), self._safe.threshold())
        threshold = validate_threshold(value, len(owners))
        self._logger.info("Current threshold: %s-of-%s", current, len(owners))
        calldata = encode_call("changeThreshold(uint256)", ["uint256"], [threshold])
        self._logger.info(
            "Proposing: Change threshold to %s-of-%s", threshold, len(owners)
        )
        return await self.propose(self.safe_address, 0, calldata)

    async def list_pending(self) -> List[ProposalRecord]:
        self._logger.info("Fetching pending transactions for %s...", self.safe_address)
        return await self._relay.list_pending(self.safe_address)

    async def confirm(self, safe_tx_hash: Optional[str]) -> ProposalResult:
        """Co-sign an existing pending proposal."""
        tx_hash = validate_safe_tx_hash(safe_tx_hash)
        account = self._require_account()
        self._logger.info("Signing transaction %s...", tx_hash)
        signature = sign_safe_tx_hash(account, tx_hash)
        status = await self._relay.confirm(tx_hash, signature)
        self._logger.info("Confirmation submitted (%s).", status)
        self._logger.info("  View: %s", self.queue_url)
        return ProposalResult(safe_tx_hash=tx_hash, status=status, queue_url=self.queue_url)
