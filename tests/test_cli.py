"""
Tests for the command line entry points.
"""

import logging
from unittest.mock import AsyncMock, patch

import pytest

from safe_treasury import cli
from safe_treasury.alerts import AlertSink
from safe_treasury.relay import Confirmation, ProposalRecord

SAFE = "0x1111111111111111111111111111111111111111"


@pytest.fixture
def safe_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("SAFE_DIR", str(tmp_path))
    monkeypatch.setenv("ALERT_WEBHOOK_URL", "")
    return tmp_path


class TestRefillMain:
    def test_version(self, capsys):
        assert cli.refill_main(["--version"]) == 0
        assert "safe-treasury-refill" in capsys.readouterr().out

    def test_exits_zero_when_lock_held(self, safe_dir):
        lock = safe_dir / ".refill.lock"
        lock.touch()

        with patch("safe_treasury.cli.run_refill") as run_refill:
            assert cli.refill_main([]) == 0

        run_refill.assert_not_called()
        assert lock.exists()

    def test_crash_alerts_and_releases_lock(self, safe_dir, monkeypatch):
        monkeypatch.setenv("SAFE_ADDRESS", "")

        with patch.object(AlertSink, "send", new=AsyncMock(return_value=False)) as send:
            assert cli.refill_main([]) == 1

        message, severity = send.await_args.args
        assert message.startswith("Refill daemon crashed - SAFE_ADDRESS not set")
        assert severity == "critical"
        assert not (safe_dir / ".refill.lock").exists()

    def test_unreadable_env_file_is_alerted(self, safe_dir):
        with patch(
            "safe_treasury.cli.load_env_file", side_effect=OSError("permission denied")
        ), patch.object(AlertSink, "send", new=AsyncMock(return_value=False)) as send:
            assert cli.refill_main([]) == 1

        send.assert_awaited_once_with(
            "Refill daemon crashed - permission denied", "critical"
        )
        assert not (safe_dir / ".refill.lock").exists()

    def test_webhook_from_env_file_used_for_crash_alert(self, safe_dir, monkeypatch):
        monkeypatch.delenv("ALERT_WEBHOOK_URL")
        monkeypatch.setenv("SAFE_ADDRESS", "")
        (safe_dir / ".env").write_text("ALERT_WEBHOOK_URL=https://hooks.example/refill\n")
        delivered = []

        async def record_send(sink, message, severity="error"):
            delivered.append((sink.webhook_url, message, severity))
            return True

        with patch.object(AlertSink, "send", new=record_send):
            assert cli.refill_main([]) == 1

        assert len(delivered) == 1
        url, message, severity = delivered[0]
        assert url == "https://hooks.example/refill"
        assert message.startswith("Refill daemon crashed - SAFE_ADDRESS not set")
        assert severity == "critical"

    def test_successful_run_releases_lock(self, safe_dir):
        with patch("safe_treasury.cli.run_refill", new=AsyncMock(return_value=0)):
            assert cli.refill_main([]) == 0
        assert not (safe_dir / ".refill.lock").exists()


class TestProposeMain:
    @pytest.fixture
    def configured(self, safe_dir, monkeypatch):
        monkeypatch.setenv("SAFE_ADDRESS", SAFE)
        monkeypatch.setenv("SAFE_RPC", "http://127.0.0.1:8545")
        return safe_dir

    def test_version(self, capsys):
        assert cli.propose_main(["--version"]) == 0
        assert "safe-treasury-propose" in capsys.readouterr().out

    def test_missing_transfer_arguments(self, configured):
        with patch("safe_treasury.cli.load_account") as load_account:
            assert cli.propose_main(["transfer", "--token", "MOR"]) == 1
        load_account.assert_not_called()

    def test_missing_configuration(self, safe_dir, monkeypatch):
        monkeypatch.setenv("SAFE_ADDRESS", "")
        assert cli.propose_main(["pending"]) == 1

    def test_pending_needs_no_key(self, configured):
        with patch("safe_treasury.cli.load_account") as load_account, patch(
            "safe_treasury.cli.RelayClient.list_pending", new=AsyncMock(return_value=[])
        ) as list_pending:
            assert cli.propose_main(["pending"]) == 0
        load_account.assert_not_called()
        list_pending.assert_awaited_once()


class TestPrintPending:
    def test_empty(self, caplog):
        logger = logging.getLogger("test_cli")
        with caplog.at_level(logging.INFO, logger="test_cli"):
            cli.print_pending([], logger)
        assert "No pending transactions." in caplog.text

    def test_records(self, caplog):
        logger = logging.getLogger("test_cli")
        record = ProposalRecord(
            safe_tx_hash="0x" + "cd" * 32,
            nonce=3,
            to=SAFE,
            value=10**18,
            data="0xa9059cbb0000000000000000000000003333",
            confirmations=[Confirmation(owner="0x4444444444444444444444444444444444444444")],
            confirmations_required=2,
        )
        with caplog.at_level(logging.INFO, logger="test_cli"):
            cli.print_pending([record], logger)

        assert "Found 1 pending transaction(s):" in caplog.text
        assert "Confirmations: 1/2" in caplog.text
        assert "Data: 0xa9059cbb0000000000..." in caplog.text
        assert "- 0x4444444444444444444444444444444444444444" in caplog.text


def test_module_dispatch_rejects_unknown_command(capsys):
    assert cli.main(["bogus"]) == 1
    assert "Usage" in capsys.readouterr().out
