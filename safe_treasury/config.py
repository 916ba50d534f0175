"""
Configuration loading for the Safe treasury tools.

Values come from the process environment, after ``<SAFE_DIR>/.env`` has been
loaded without overriding variables that are already set. The result is a
frozen ``TreasuryConfig`` that is passed explicitly to every component.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv
from web3 import Web3

from .constants import (
    DEFAULT_ALLOWANCE_MODULE_ADDRESS,
    DEFAULT_ETH_LOW_THRESHOLD,
    DEFAULT_ETH_REFILL_AMOUNT,
    DEFAULT_KEYCHAIN_ACCOUNT,
    DEFAULT_KEYCHAIN_DB,
    DEFAULT_KEYCHAIN_SERVICE,
    DEFAULT_MOR_LOW_THRESHOLD,
    DEFAULT_MOR_REFILL_AMOUNT,
    DEFAULT_SAFE_DIR,
    DEFAULT_TX_SERVICE_URL,
    MOR_TOKEN_ADDRESS,
)
from .exceptions import ConfigurationError


@dataclass(frozen=True)
class KeychainConfig:
    """Location of the agent key inside the macOS keychain."""

    account: str = DEFAULT_KEYCHAIN_ACCOUNT
    service: str = DEFAULT_KEYCHAIN_SERVICE
    db_path: str = str(Path(DEFAULT_KEYCHAIN_DB).expanduser())


@dataclass(frozen=True)
class TreasuryConfig:
    """Runtime configuration shared by the proposal tool and the refill job."""

    safe_address: str
    rpc_url: str
    safe_dir: Path
    tx_service_url: str = DEFAULT_TX_SERVICE_URL
    allowance_module: str = DEFAULT_ALLOWANCE_MODULE_ADDRESS
    mor_token: str = MOR_TOKEN_ADDRESS
    mor_low_threshold: int = Web3.to_wei(Decimal(DEFAULT_MOR_LOW_THRESHOLD), "ether")
    mor_refill_amount: int = Web3.to_wei(Decimal(DEFAULT_MOR_REFILL_AMOUNT), "ether")
    eth_low_threshold: int = Web3.to_wei(Decimal(DEFAULT_ETH_LOW_THRESHOLD), "ether")
    eth_refill_amount: int = Web3.to_wei(Decimal(DEFAULT_ETH_REFILL_AMOUNT), "ether")
    keychain: KeychainConfig = field(default_factory=KeychainConfig)


def _lookup(environ: Mapping[str, str], *names: str) -> Optional[str]:
    """Return the first non-empty value among ``names``."""
    for name in names:
        value = environ.get(name)
        if value and value.strip():
            return value.strip()
    return None


def _parse_ether(environ: Mapping[str, str], name: str, default: str) -> int:
    raw = _lookup(environ, name) or default
    try:
        amount = Decimal(raw)
    except InvalidOperation:
        raise ConfigurationError(f"{name} must be a decimal amount, got {raw!r}") from None
    if amount < 0:
        raise ConfigurationError(f"{name} must not be negative, got {raw!r}")
    return int(Web3.to_wei(amount, "ether"))


def _parse_address(name: str, value: str) -> str:
    if not Web3.is_address(value):
        raise ConfigurationError(f"{name} is not a valid address: {value!r}")
    return Web3.to_checksum_address(value)


def resolve_safe_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Return the directory that holds the .env file and the refill lock."""
    env = os.environ if environ is None else environ
    raw = _lookup(env, "SAFE_DIR", "MORPHEUS_DIR") or DEFAULT_SAFE_DIR
    return Path(raw).expanduser()


def resolve_alert_webhook_url(environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Return the alert webhook, or None when alerts should only be logged."""
    env = os.environ if environ is None else environ
    return _lookup(env, "ALERT_WEBHOOK_URL")


def load_env_file(safe_dir: Path) -> bool:
    """Load ``<safe_dir>/.env`` into the process environment, existing vars win."""
    env_path = safe_dir / ".env"
    if not env_path.exists():
        return False
    return load_dotenv(dotenv_path=env_path, override=False)


def load_config(environ: Optional[Mapping[str, str]] = None) -> TreasuryConfig:
    """Build a ``TreasuryConfig`` from environment variables.

    Raises:
        ConfigurationError: when SAFE_ADDRESS or the RPC endpoint is missing,
            or a numeric/address option cannot be parsed.
    """
    env = os.environ if environ is None else environ
    safe_dir = resolve_safe_dir(env)

    safe_address = _lookup(env, "SAFE_ADDRESS")
    if not safe_address:
        raise ConfigurationError(f"SAFE_ADDRESS not set. Add it to {safe_dir / '.env'}")

    # Public RPCs can return manipulated data, so there is no fallback.
    rpc_url = _lookup(env, "SAFE_RPC", "EVERCLAW_RPC")
    if not rpc_url:
        raise ConfigurationError(
            f"SAFE_RPC not configured in {safe_dir / '.env'}. "
            "Public RPCs are NOT secure for financial operations; "
            "use Alchemy, Infura, QuickNode, or your own node."
        )

    allowance_module = _lookup(env, "ALLOWANCE_MODULE") or DEFAULT_ALLOWANCE_MODULE_ADDRESS
    keychain = KeychainConfig(
        account=_lookup(env, "SAFE_KEYCHAIN_ACCOUNT", "EVERCLAW_KEYCHAIN_ACCOUNT")
        or DEFAULT_KEYCHAIN_ACCOUNT,
        service=_lookup(env, "SAFE_KEYCHAIN_SERVICE", "EVERCLAW_KEYCHAIN_SERVICE")
        or DEFAULT_KEYCHAIN_SERVICE,
        db_path=str(
            Path(
                _lookup(env, "SAFE_KEYCHAIN_DB", "EVERCLAW_KEYCHAIN_DB")
                or DEFAULT_KEYCHAIN_DB
            ).expanduser()
        ),
    )

    return TreasuryConfig(
        safe_address=_parse_address("SAFE_ADDRESS", safe_address),
        rpc_url=rpc_url,
        safe_dir=safe_dir,
        tx_service_url=(_lookup(env, "SAFE_TX_SERVICE") or DEFAULT_TX_SERVICE_URL).rstrip("/"),
        allowance_module=_parse_address("ALLOWANCE_MODULE", allowance_module),
        mor_low_threshold=_parse_ether(env, "MOR_LOW_THRESHOLD", DEFAULT_MOR_LOW_THRESHOLD),
        mor_refill_amount=_parse_ether(env, "MOR_REFILL_AMOUNT", DEFAULT_MOR_REFILL_AMOUNT),
        eth_low_threshold=_parse_ether(env, "ETH_LOW_THRESHOLD", DEFAULT_ETH_LOW_THRESHOLD),
        eth_refill_amount=_parse_ether(env, "ETH_REFILL_AMOUNT", DEFAULT_ETH_REFILL_AMOUNT),
        keychain=keychain,
    )
