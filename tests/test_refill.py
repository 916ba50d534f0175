"""
Tests for the refill controller.

The AllowanceClient is a mock (see ``allowance_client`` in conftest) and
alerts go to a recording double that keeps each (message, severity) pair
instead of posting it.
"""

import logging
from typing import List, Tuple
from unittest.mock import AsyncMock, call

import pytest

from safe_treasury.constants import MOR_TOKEN_ADDRESS, ZERO_ADDRESS
from safe_treasury.exceptions import FatalMisconfiguration, SimulationFailure
from safe_treasury.refill import (
    FailureClass,
    RefillController,
    RefillOutcome,
    classify_failure,
)

HOT_WALLET = "0x2222222222222222222222222222222222222222"
MOR = 10**18


class RecordingAlertSink:
    """Alert sink double that keeps every alert instead of posting it."""

    def __init__(self):
        self.received: List[Tuple[str, str]] = []

    async def send(self, message: str, severity: str = "error") -> bool:
        self.received.append((message, severity))
        return True


@pytest.fixture
def alerts():
    return RecordingAlertSink()


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def controller(treasury_config, allowance_client, alerts, sleep):
    return RefillController(
        treasury_config,
        allowance_client,
        alerts,
        HOT_WALLET,
        sleep=sleep,
        logger=logging.getLogger("test_refill"),
    )


class TestClassifyFailure:
    @pytest.mark.parametrize(
        "message",
        [
            "execution reverted: not a delegate",
            "GS104: module not enabled",
            "Method only allowed from enabled module",
            "invalid delegate",
            "unauthorized",
        ],
    )
    def test_misconfiguration(self, message):
        assert classify_failure(message) is FailureClass.MISCONFIGURATION

    @pytest.mark.parametrize("message", ["allowance exceeded", "Allowance exhausted"])
    def test_exhaustion(self, message):
        assert classify_failure(message) is FailureClass.ALLOWANCE_EXHAUSTED

    @pytest.mark.parametrize("message", ["insufficient funds for gas", "Unauthorized", "NOT ENABLED"])
    def test_other_is_case_sensitive(self, message):
        assert classify_failure(message) is FailureClass.OTHER

    def test_misconfiguration_checked_first(self):
        assert classify_failure("allowance module not enabled") is FailureClass.MISCONFIGURATION


class TestRefillController:
    @pytest.mark.asyncio
    async def test_balances_above_threshold_skip_both(self, controller, allowance_client, alerts):
        """MOR 25 (threshold 20), ETH 0.02 (threshold 0.01): nothing to do."""
        report = await controller.run()

        assert report.outcome_for("MOR") is RefillOutcome.SKIPPED
        assert report.outcome_for("ETH") is RefillOutcome.SKIPPED
        assert not report.has_errors
        allowance_client.simulate.assert_not_awaited()
        allowance_client.execute.assert_not_awaited()
        assert alerts.received == []

    @pytest.mark.asyncio
    async def test_low_mor_is_refilled(self, controller, allowance_client, alerts):
        """MOR 5 (threshold 20, refill 30): simulate, broadcast once, no alert."""
        allowance_client.token_balance.return_value = 5 * MOR

        report = await controller.run()

        assert report.outcome_for("MOR") is RefillOutcome.OK
        assert report.outcome_for("ETH") is RefillOutcome.SKIPPED
        assert report.attempts[0].tx_hash == "0x" + "ab" * 32
        allowance_client.execute.assert_awaited_once()
        transfer = allowance_client.execute.await_args.args[0]
        assert transfer.token == MOR_TOKEN_ADDRESS
        assert transfer.amount == 30 * MOR
        assert transfer.to == HOT_WALLET
        assert transfer.delegate == HOT_WALLET
        assert allowance_client.simulate.await_args.args[0] == transfer
        assert alerts.received == []

    @pytest.mark.asyncio
    async def test_low_eth_uses_native_token(self, controller, allowance_client):
        allowance_client.native_balance.return_value = 10**15

        report = await controller.run()

        assert report.outcome_for("ETH") is RefillOutcome.OK
        transfer = allowance_client.execute.await_args.args[0]
        assert transfer.token == ZERO_ADDRESS
        assert transfer.amount == 3 * 10**16

    @pytest.mark.asyncio
    async def test_fatal_mor_misconfiguration_skips_eth(
        self, controller, allowance_client, alerts, caplog
    ):
        allowance_client.token_balance.return_value = 5 * MOR
        allowance_client.native_balance.return_value = 10**15
        allowance_client.simulate.side_effect = SimulationFailure(
            "execution reverted: GS104 not enabled"
        )

        with caplog.at_level(logging.INFO, logger="test_refill"):
            report = await controller.run()

        assert report.outcome_for("MOR") is RefillOutcome.FATAL_MISCONFIGURATION
        assert report.outcome_for("ETH") is RefillOutcome.SKIPPED
        assert report.attempts[1].detail
        assert report.is_fatal
        assert isinstance(report.attempts[0].error, FatalMisconfiguration)
        allowance_client.simulate.assert_awaited_once()
        allowance_client.execute.assert_not_awaited()
        assert len(alerts.received) == 1
        assert alerts.received[0][1] == "critical"
        assert "CRITICAL: Refill configuration broken" in alerts.received[0][0]
        assert "Refill check complete (with errors)." in caplog.text

    @pytest.mark.asyncio
    async def test_fatal_eth_misconfiguration_only_alerts(self, controller, allowance_client, alerts):
        allowance_client.native_balance.return_value = 10**15
        allowance_client.simulate.side_effect = SimulationFailure("unauthorized")

        report = await controller.run()

        assert report.outcome_for("MOR") is RefillOutcome.SKIPPED
        assert report.outcome_for("ETH") is RefillOutcome.FATAL_MISCONFIGURATION
        assert [severity for _, severity in alerts.received] == ["critical"]

    @pytest.mark.asyncio
    async def test_exhausted_allowance_is_not_alerted(self, controller, allowance_client, alerts):
        allowance_client.token_balance.return_value = 5 * MOR
        allowance_client.simulate.side_effect = SimulationFailure("Allowance exceeded")

        report = await controller.run()

        assert report.outcome_for("MOR") is RefillOutcome.TRANSIENT_FAILURE
        allowance_client.execute.assert_not_awaited()
        assert alerts.received == []

    @pytest.mark.asyncio
    async def test_other_failure_raises_standard_alert(self, controller, allowance_client, alerts):
        allowance_client.token_balance.return_value = 5 * MOR
        allowance_client.execute.side_effect = RuntimeError("nonce too low")

        report = await controller.run()

        assert report.outcome_for("MOR") is RefillOutcome.TRANSIENT_FAILURE
        assert report.outcome_for("ETH") is RefillOutcome.SKIPPED
        assert len(alerts.received) == 1
        assert alerts.received[0][1] == "error"
        assert alerts.received[0][0].endswith(
            "MOR refill failed: nonce too low. Hot wallet may run out of MOR."
        )

    @pytest.mark.asyncio
    async def test_reverted_transfer_alerts(self, controller, allowance_client, alerts):
        allowance_client.native_balance.return_value = 10**15
        allowance_client.wait_for_receipt.return_value = False

        report = await controller.run()

        assert report.outcome_for("ETH") is RefillOutcome.REVERTED
        assert report.has_errors
        assert alerts.received[0][0].endswith(
            "ETH refill transaction reverted. Hot wallet may run out of gas."
        )

    @pytest.mark.asyncio
    async def test_transient_balance_read_retried(self, controller, allowance_client, sleep):
        allowance_client.token_balance.side_effect = [
            ConnectionError("ECONNRESET"),
            TimeoutError(),
            25 * MOR,
        ]

        report = await controller.run()

        assert report.outcome_for("MOR") is RefillOutcome.SKIPPED
        assert allowance_client.token_balance.await_count == 3
        assert sleep.await_args_list == [call(1.0), call(2.0)]

    @pytest.mark.asyncio
    async def test_non_transient_balance_read_aborts_run(self, controller, allowance_client, sleep):
        allowance_client.token_balance.side_effect = ValueError("Could not decode contract output")

        with pytest.raises(ValueError):
            await controller.run()

        sleep.assert_not_awaited()
        allowance_client.simulate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unreadable_allowance_does_not_change_outcome(self, controller, allowance_client):
        allowance_client.token_balance.return_value = 5 * MOR
        allowance_client.get_allowance.side_effect = ValueError("no such function")

        report = await controller.run()

        assert report.outcome_for("MOR") is RefillOutcome.OK
