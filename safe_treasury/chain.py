"""
On-chain access for the Safe treasury tools.

``SafeReader`` reads the Safe's nonce, domain separator and owner set.
``AllowanceClient`` reads balances and drives the AllowanceModule: it can
dry-run an allowance transfer with ``eth_call`` and broadcast it from the
delegate (hot wallet) account.

web3.py is synchronous; every call is pushed to the default executor so
the asyncio callers never block the event loop.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar, cast

from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import Web3
from web3.contract import Contract
from web3.exceptions import ContractLogicError, Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware
from web3.types import TxParams

from .constants import (
    ALLOWANCE_MODULE_ABI,
    ERC20_ABI,
    MAX_TRANSACTION_GAS,
    RECEIPT_TIMEOUT_SECONDS,
    SAFE_ABI,
    ZERO_ADDRESS,
)
from .exceptions import SimulationFailure

T = TypeVar("T")

# EIP-1559 fee defaults (values expressed in wei)
DEFAULT_PRIORITY_FEE_PER_GAS = Web3.to_wei(5, "mwei")  # 0.005 gwei
MIN_PRIORITY_FEE_PER_GAS = Web3.to_wei(1, "mwei")  # 0.001 gwei floor
MAX_PRIORITY_FEE_PER_GAS = Web3.to_wei(50, "mwei")  # 0.05 gwei cap
MIN_FEE_BUFFER_PER_GAS = Web3.to_wei(5, "mwei")  # 0.005 gwei headroom
MAX_FEE_BUFFER_PER_GAS = Web3.to_wei(50, "mwei")  # 0.05 gwei cap
GAS_ESTIMATE_MULTIPLIER = 1.2
MIN_GAS_LIMIT = 100_000


def create_web3(rpc_url: str) -> Web3:
    """Create an HTTP Web3 client with extra-data POA support for Base."""
    w3 = Web3(Web3.HTTPProvider(rpc_url))
    try:
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    except ValueError:
        pass
    return w3


class _ExecutorClient:
    """Runs blocking web3 calls on the default executor."""

    def __init__(self, w3: Web3, logger: Optional[logging.Logger] = None) -> None:
        self._w3 = w3
        self._logger = logger or logging.getLogger(type(self).__name__)

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))


class SafeReader(_ExecutorClient):
    """Read-only view of a Safe contract."""

    def __init__(
        self,
        w3: Web3,
        safe_address: str,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(w3, logger or logging.getLogger("safe_reader"))
        self.address = Web3.to_checksum_address(safe_address)
        self._contract: Contract = w3.eth.contract(address=self.address, abi=SAFE_ABI)

    async def nonce(self) -> int:
        return int(await self._run(self._contract.functions.nonce().call))

    async def domain_separator(self) -> bytes:
        value = await self._run(self._contract.functions.domainSeparator().call)
        return bytes(HexBytes(value))

    async def owners(self) -> List[str]:
        owners = await self._run(self._contract.functions.getOwners().call)
        return [Web3.to_checksum_address(owner) for owner in owners]

    async def threshold(self) -> int:
        return int(await self._run(self._contract.functions.getThreshold().call))


@dataclass(frozen=True)
class AllowanceTransfer:
    """Arguments of ``AllowanceModule.executeAllowanceTransfer``.

    The delegate calls the module itself, so no payment and no signature.
    """

    safe: str
    token: str
    to: str
    amount: int
    delegate: str

    def as_args(self) -> Tuple[Any, ...]:
        return (
            Web3.to_checksum_address(self.safe),
            Web3.to_checksum_address(self.token),
            Web3.to_checksum_address(self.to),
            self.amount,
            ZERO_ADDRESS,  # paymentToken
            0,  # payment
            Web3.to_checksum_address(self.delegate),
            b"",  # signature
        )


@dataclass(frozen=True)
class AllowanceState:
    """Decoded ``getTokenAllowance`` tuple for one (safe, delegate, token)."""

    amount: int
    spent: int
    reset_time_min: int
    last_reset_min: int
    nonce: int

    @property
    def remaining(self) -> int:
        return max(self.amount - self.spent, 0)

    @classmethod
    def from_tuple(cls, values: Any) -> "AllowanceState":
        amount, spent, reset_time_min, last_reset_min, nonce = (int(v) for v in values)
        return cls(amount, spent, reset_time_min, last_reset_min, nonce)


class AllowanceClient(_ExecutorClient):
    """Balances plus simulation and execution of allowance transfers."""

    def __init__(
        self,
        w3: Web3,
        module_address: str,
        account: Optional[LocalAccount] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(w3, logger or logging.getLogger("allowance_client"))
        self._account = account
        self.module_address = Web3.to_checksum_address(module_address)
        self._module: Contract = w3.eth.contract(
            address=self.module_address, abi=ALLOWANCE_MODULE_ABI
        )

    async def token_balance(self, token: str, owner: str) -> int:
        contract = self._w3.eth.contract(
            address=Web3.to_checksum_address(token), abi=ERC20_ABI
        )
        call = contract.functions.balanceOf(Web3.to_checksum_address(owner)).call
        return int(await self._run(call))

    async def native_balance(self, owner: str) -> int:
        return int(
            await self._run(self._w3.eth.get_balance, Web3.to_checksum_address(owner))
        )

    async def get_allowance(self, safe: str, delegate: str, token: str) -> AllowanceState:
        call = self._module.functions.getTokenAllowance(
            Web3.to_checksum_address(safe),
            Web3.to_checksum_address(delegate),
            Web3.to_checksum_address(token),
        ).call
        return AllowanceState.from_tuple(await self._run(call))

    async def simulate(self, transfer: AllowanceTransfer) -> None:
        """Dry-run the transfer against current state; raise SimulationFailure on revert."""
        await self._run(self._simulate_sync, transfer)

    async def execute(self, transfer: AllowanceTransfer) -> str:
        """Sign and broadcast the transfer from the delegate account; return the tx hash."""
        return await self._run(self._execute_sync, transfer)

    async def wait_for_receipt(self, tx_hash: str) -> bool:
        """Wait for inclusion and return True when the transaction succeeded."""
        receipt = await self._run(
            functools.partial(
                self._w3.eth.wait_for_transaction_receipt,
                HexBytes(tx_hash),
                timeout=RECEIPT_TIMEOUT_SECONDS,
            )
        )
        return int(receipt.get("status", 0)) == 1

    def _transfer_function(self, transfer: AllowanceTransfer) -> Any:
        return self._module.functions.executeAllowanceTransfer(*transfer.as_args())

    def _simulate_sync(self, transfer: AllowanceTransfer) -> None:
        try:
            self._transfer_function(transfer).call(
                {"from": Web3.to_checksum_address(transfer.delegate)}
            )
        except (ContractLogicError, Web3Exception, ValueError) as exc:
            raise SimulationFailure(str(exc)) from exc

    def _execute_sync(self, transfer: AllowanceTransfer) -> str:
        if self._account is None:
            raise RuntimeError("AllowanceClient has no signing account configured")
        account = self._account
        tx_params: Dict[str, Any] = {
            "from": account.address,
            "nonce": self._w3.eth.get_transaction_count(account.address, "pending"),
            "chainId": self._w3.eth.chain_id,
        }
        gas_limit = self._estimate_gas(transfer, tx_params)
        if gas_limit:
            tx_params["gas"] = gas_limit
        self._apply_fee_parameters(tx_params)

        txn = self._transfer_function(transfer).build_transaction(cast(TxParams, tx_params))
        signed = account.sign_transaction(txn)
        raw_tx = getattr(signed, "raw_transaction", None) or getattr(
            signed, "rawTransaction", None
        )
        if raw_tx is None:
            raise AttributeError("Signed transaction missing raw payload")
        tx_hash = self._w3.eth.send_raw_transaction(raw_tx)
        return Web3.to_hex(tx_hash)

    def _estimate_gas(
        self, transfer: AllowanceTransfer, tx_params: Dict[str, Any]
    ) -> Optional[int]:
        try:
            estimate = self._transfer_function(transfer).estimate_gas(
                cast(TxParams, dict(tx_params))
            )
        except Exception as exc:
            self._logger.debug("Gas estimation failed for allowance transfer: %s", exc)
            return None
        result = max(int(estimate * GAS_ESTIMATE_MULTIPLIER), MIN_GAS_LIMIT)
        if result > MAX_TRANSACTION_GAS:
            self._logger.warning(
                "Allowance transfer gas estimate %s exceeds per-transaction limit %s; capping to limit",
                result,
                MAX_TRANSACTION_GAS,
            )
            result = MAX_TRANSACTION_GAS
        return result

    def _apply_fee_parameters(self, tx_params: Dict[str, Any]) -> None:
        """Populate gas price / fee parameters depending on network support."""
        try:
            latest_block = self._w3.eth.get_block("latest")
        except Exception as exc:
            self._logger.debug("Failed to fetch latest block for fee parameters: %s", exc)
            tx_params["gasPrice"] = self._w3.eth.gas_price
            return

        base_fee = latest_block.get("baseFeePerGas")
        if base_fee is None:
            tx_params["gasPrice"] = self._w3.eth.gas_price
            return

        priority_fee = self._suggest_priority_fee()
        buffer = max(int(MIN_FEE_BUFFER_PER_GAS), min(priority_fee, int(MAX_FEE_BUFFER_PER_GAS)))
        tx_params["maxPriorityFeePerGas"] = priority_fee
        tx_params["maxFeePerGas"] = int(base_fee) + priority_fee + buffer
        self._logger.debug(
            "Allowance transfer fee params: base=%s priority=%s buffer=%s",
            base_fee,
            priority_fee,
            buffer,
        )

    def _suggest_priority_fee(self) -> int:
        priority_fee: Optional[int] = None
        try:
            priority_fee = int(self._w3.eth.max_priority_fee)
        except Exception as exc:
            self._logger.debug("Failed to obtain RPC priority fee suggestion: %s", exc)

        if priority_fee is None or priority_fee <= 0:
            return int(DEFAULT_PRIORITY_FEE_PER_GAS)
        return min(
            max(priority_fee, int(MIN_PRIORITY_FEE_PER_GAS)),
            int(MAX_PRIORITY_FEE_PER_GAS),
        )
