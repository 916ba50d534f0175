"""Shared fixtures: repository path setup and HTTP / chain doubles."""

import sys
from pathlib import Path
from typing import Any, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest

# Make the package importable without installing it
sys.path.insert(0, str(Path(__file__).parent.parent))

from eth_account import Account  # noqa: E402

from safe_treasury.chain import AllowanceState  # noqa: E402
from safe_treasury.config import TreasuryConfig  # noqa: E402
from safe_treasury.constants import DEFAULT_ALLOWANCE_MODULE_ADDRESS  # noqa: E402

SAFE_ADDRESS = "0x1111111111111111111111111111111111111111"
HOT_WALLET = "0x2222222222222222222222222222222222222222"
TEST_PRIVATE_KEY = "0x" + "4c" * 32


class FakeResponse:
    """Minimal stand-in for an aiohttp response used as an async context manager."""

    def __init__(self, status: int = 200, payload: Any = None, body: str = "") -> None:
        self.status = status
        self._payload = payload
        self._body = body

    async def json(self) -> Any:
        return self._payload

    async def text(self) -> str:
        return self._body

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc_info: Any) -> bool:
        return False


class FakeSession:
    """Records requests and replays queued responses in order."""

    def __init__(self, responses: Optional[List[FakeResponse]] = None) -> None:
        self.responses = list(responses or [])
        self.calls: List[Tuple[str, str, Any]] = []

    def _next(self) -> FakeResponse:
        return self.responses.pop(0) if self.responses else FakeResponse()

    def post(self, url: str, json: Any = None) -> FakeResponse:
        self.calls.append(("POST", url, json))
        return self._next()

    def get(self, url: str, params: Any = None) -> FakeResponse:
        self.calls.append(("GET", url, params))
        return self._next()


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def account():
    return Account.from_key(TEST_PRIVATE_KEY)


@pytest.fixture
def treasury_config(tmp_path):
    return TreasuryConfig(
        safe_address=SAFE_ADDRESS,
        rpc_url="http://127.0.0.1:8545",
        safe_dir=tmp_path,
    )


@pytest.fixture
def allowance_client():
    """AllowanceClient double: healthy balances, simulations and receipts."""
    client = MagicMock()
    client.module_address = DEFAULT_ALLOWANCE_MODULE_ADDRESS
    client.token_balance = AsyncMock(return_value=25 * 10**18)
    client.native_balance = AsyncMock(return_value=2 * 10**16)
    client.get_allowance = AsyncMock(
        return_value=AllowanceState(
            amount=100 * 10**18,
            spent=10 * 10**18,
            reset_time_min=1440,
            last_reset_min=0,
            nonce=1,
        )
    )
    client.simulate = AsyncMock(return_value=None)
    client.execute = AsyncMock(return_value="0x" + "ab" * 32)
    client.wait_for_receipt = AsyncMock(return_value=True)
    return client
