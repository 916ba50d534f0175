"""
Hot wallet refill via the Safe AllowanceModule.

One run checks the hot wallet's MOR and ETH balances and, for each asset
below its threshold, pulls a fixed top-up from the Safe with
``executeAllowanceTransfer``. The hot wallet is the registered delegate, so
it calls the module directly and no owner signature is needed.

Each transfer is simulated before it is broadcast. Failures are classified
by their error message:

* misconfiguration (delegate missing, module not enabled, ...) is fatal and
  raises a critical alert; a fatal MOR path also skips the ETH path;
* allowance exhaustion is the expected steady state and is only logged;
* anything else raises a standard alert.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from web3 import Web3

from .alerts import AlertSink
from .chain import AllowanceClient, AllowanceTransfer
from .config import TreasuryConfig
from .constants import ZERO_ADDRESS
from .exceptions import ExecutionFailure, FatalMisconfiguration
from .retry import with_retry


class RefillOutcome(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    TRANSIENT_FAILURE = "transient-failure"
    FATAL_MISCONFIGURATION = "fatal-misconfiguration"
    REVERTED = "reverted"


class FailureClass(Enum):
    MISCONFIGURATION = "misconfiguration"
    ALLOWANCE_EXHAUSTED = "allowance-exhausted"
    OTHER = "other"


# Matched case-sensitively against the failure message, first match wins.
FAILURE_CLASSIFICATION: Tuple[Tuple[FailureClass, Tuple[str, ...]], ...] = (
    (
        FailureClass.MISCONFIGURATION,
        ("not a delegate", "module", "not enabled", "invalid delegate", "unauthorized"),
    ),
    (FailureClass.ALLOWANCE_EXHAUSTED, ("allowance", "Allowance")),
)


def classify_failure(message: str) -> FailureClass:
    for failure_class, markers in FAILURE_CLASSIFICATION:
        if any(marker in message for marker in markers):
            return failure_class
    return FailureClass.OTHER


def _error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def _format_ether(wei: int) -> str:
    return f"{Web3.from_wei(wei, 'ether'):f}"


@dataclass(frozen=True)
class TrackedAsset:
    symbol: str
    token: str
    threshold: int
    refill_amount: int
    # what the hot wallet runs out of when this asset is empty
    shortfall: str

    @property
    def is_native(self) -> bool:
        return int(self.token, 16) == 0


@dataclass
class RefillAttempt:
    """Outcome of one asset check within a single run."""

    symbol: str
    token: str
    balance: int
    threshold: int
    amount: int
    outcome: Optional[RefillOutcome] = None
    tx_hash: Optional[str] = None
    detail: Optional[str] = None
    error: Optional[BaseException] = None


@dataclass
class RefillReport:
    attempts: List[RefillAttempt] = field(default_factory=list)

    def outcome_for(self, symbol: str) -> Optional[RefillOutcome]:
        for attempt in self.attempts:
            if attempt.symbol == symbol:
                return attempt.outcome
        return None

    @property
    def is_fatal(self) -> bool:
        return any(
            a.outcome is RefillOutcome.FATAL_MISCONFIGURATION for a in self.attempts
        )

    @property
    def has_errors(self) -> bool:
        return any(
            a.outcome not in (RefillOutcome.OK, RefillOutcome.SKIPPED)
            for a in self.attempts
        )


class RefillController:
    """Runs one refill check for the hot wallet."""

    def __init__(
        self,
        config: TreasuryConfig,
        allowance: AllowanceClient,
        alerts: AlertSink,
        hot_wallet: str,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._config = config
        self._allowance = allowance
        self._alerts = alerts
        self._hot_wallet = Web3.to_checksum_address(hot_wallet)
        self._sleep = sleep
        self._logger = logger or logging.getLogger("refill")

    def tracked_assets(self) -> Sequence[TrackedAsset]:
        return (
            TrackedAsset(
                symbol="MOR",
                token=self._config.mor_token,
                threshold=self._config.mor_low_threshold,
                refill_amount=self._config.mor_refill_amount,
                shortfall="MOR",
            ),
            TrackedAsset(
                symbol="ETH",
                token=ZERO_ADDRESS,
                threshold=self._config.eth_low_threshold,
                refill_amount=self._config.eth_refill_amount,
                shortfall="gas",
            ),
        )

    async def run(self) -> RefillReport:
        """Check both assets and refill the ones below threshold.

        Balance read failures that survive the retry policy propagate and
        abort the whole run.
        """
        self._logger.info("--- Safe refill check ---")
        self._logger.info("Safe: %s", self._config.safe_address)
        self._logger.info("AllowanceModule: %s", self._allowance.module_address)
        self._logger.info("Hot wallet: %s", self._hot_wallet)

        assets = self.tracked_assets()
        balances = await asyncio.gather(*(self._read_balance(asset) for asset in assets))
        for asset, balance in zip(assets, balances):
            self._logger.info("%s balance: %s", asset.symbol, _format_ether(balance))

        report = RefillReport()
        fatal_fungible = False
        for asset, balance in zip(assets, balances):
            if fatal_fungible:
                report.attempts.append(
                    RefillAttempt(
                        symbol=asset.symbol,
                        token=asset.token,
                        balance=balance,
                        threshold=asset.threshold,
                        amount=asset.refill_amount,
                        outcome=RefillOutcome.SKIPPED,
                        detail="skipped after fatal misconfiguration",
                    )
                )
                continue

            attempt = await self._refill_asset(asset, balance)
            report.attempts.append(attempt)
            if (
                attempt.outcome is RefillOutcome.FATAL_MISCONFIGURATION
                and not asset.is_native
            ):
                self._logger.error(
                    "FATAL: Fundamental configuration issue detected. Skipping ETH refill."
                )
                fatal_fungible = True

        if report.has_errors:
            self._logger.info("Refill check complete (with errors).")
        else:
            self._logger.info("Refill check complete.")
        return report

    async def _read_balance(self, asset: TrackedAsset) -> int:
        if asset.is_native:
            fn = lambda: self._allowance.native_balance(self._hot_wallet)  # noqa: E731
        else:
            fn = lambda: self._allowance.token_balance(asset.token, self._hot_wallet)  # noqa: E731
        return await with_retry(
            fn,
            description=f"{asset.symbol} balance check",
            sleep=self._sleep,
            log=self._logger,
        )

    async def _log_remaining_allowance(self, asset: TrackedAsset) -> None:
        try:
            state = await self._allowance.get_allowance(
                self._config.safe_address, self._hot_wallet, asset.token
            )
        except Exception as exc:
            self._logger.debug("Could not read %s allowance: %s", asset.symbol, exc)
            return
        self._logger.info(
            "  %s allowance remaining: %s (spent %s of %s)",
            asset.symbol,
            _format_ether(state.remaining),
            _format_ether(state.spent),
            _format_ether(state.amount),
        )

    async def _refill_asset(self, asset: TrackedAsset, balance: int) -> RefillAttempt:
        attempt = RefillAttempt(
            symbol=asset.symbol,
            token=asset.token,
            balance=balance,
            threshold=asset.threshold,
            amount=asset.refill_amount,
        )
        if balance >= asset.threshold:
            self._logger.info("%s balance OK.", asset.symbol)
            attempt.outcome = RefillOutcome.SKIPPED
            return attempt

        self._logger.info(
            "%s below %s threshold. Pulling %s from Safe...",
            asset.symbol,
            _format_ether(asset.threshold),
            _format_ether(asset.refill_amount),
        )
        await self._log_remaining_allowance(asset)

        transfer = AllowanceTransfer(
            safe=self._config.safe_address,
            token=asset.token,
            to=self._hot_wallet,
            amount=asset.refill_amount,
            delegate=self._hot_wallet,
        )
        try:
            # A failed simulation never reaches the broadcast below.
            self._logger.info("  Simulating %s refill...", asset.symbol)
            await self._allowance.simulate(transfer)
            self._logger.info("  Simulation OK. Sending transaction...")

            attempt.tx_hash = await self._allowance.execute(transfer)
            self._logger.info("%s refill tx: %s", asset.symbol, attempt.tx_hash)
            succeeded = await self._allowance.wait_for_receipt(attempt.tx_hash)
            self._logger.info(
                "%s refill: %s", asset.symbol, "SUCCESS" if succeeded else "REVERTED"
            )
            if not succeeded:
                raise ExecutionFailure(attempt.tx_hash)
            attempt.outcome = RefillOutcome.OK
        except ExecutionFailure as exc:
            attempt.outcome = RefillOutcome.REVERTED
            attempt.error = exc
            await self._alerts.send(
                f"{asset.symbol} refill transaction reverted. "
                f"Hot wallet may run out of {asset.shortfall}."
            )
        except Exception as exc:
            await self._handle_failure(asset, attempt, exc)
        return attempt

    async def _handle_failure(
        self, asset: TrackedAsset, attempt: RefillAttempt, exc: Exception
    ) -> None:
        message = _error_message(exc)
        attempt.detail = message
        self._logger.warning("%s refill failed: %s", asset.symbol, message)

        failure_class = classify_failure(message)
        if failure_class is FailureClass.MISCONFIGURATION:
            attempt.outcome = RefillOutcome.FATAL_MISCONFIGURATION
            attempt.error = FatalMisconfiguration(message)
            await self._alerts.send(
                f"CRITICAL: Refill configuration broken - {message}", "critical"
            )
            return

        attempt.outcome = RefillOutcome.TRANSIENT_FAILURE
        attempt.error = exc
        if failure_class is FailureClass.ALLOWANCE_EXHAUSTED:
            self._logger.info(
                "%s allowance exhausted for now; will retry on the next run", asset.symbol
            )
            return
        await self._alerts.send(
            f"{asset.symbol} refill failed: {message}. "
            f"Hot wallet may run out of {asset.shortfall}."
        )
