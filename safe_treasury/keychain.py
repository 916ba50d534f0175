"""Read the agent's signing key from the macOS keychain."""

from __future__ import annotations

import logging
import subprocess
from typing import Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

from .config import KeychainConfig
from .exceptions import SecretStoreError

logger = logging.getLogger(__name__)


def read_private_key(keychain: KeychainConfig) -> str:
    """Return the 0x-prefixed private key stored in the keychain.

    The keychain must already be unlocked; passing its password on the
    command line would expose it in ``ps`` output.
    """
    args = [
        "security",
        "find-generic-password",
        "-a",
        keychain.account,
        "-s",
        keychain.service,
        "-w",
        keychain.db_path,
    ]
    try:
        completed = subprocess.run(  # noqa: S603,S607 (fixed argv)
            args,
            check=True,
            capture_output=True,
            text=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        logger.debug("Keychain lookup failed: %s", exc)
        raise SecretStoreError(
            "Could not retrieve wallet key from Keychain "
            f"(account: {keychain.account}, service: {keychain.service}). "
            f'Unlock keychain first: security unlock-keychain "{keychain.db_path}"'
        ) from exc

    key = completed.stdout.strip()
    if not key:
        raise SecretStoreError(
            f"Keychain entry {keychain.service}/{keychain.account} is empty"
        )
    if not key.startswith("0x"):
        key = f"0x{key}"
    return key


def load_account(
    keychain: KeychainConfig, private_key: Optional[str] = None
) -> LocalAccount:
    """Build the signing account, reading the key from the keychain if needed."""
    key = private_key or read_private_key(keychain)
    try:
        return Account.from_key(key)
    except ValueError as exc:
        raise SecretStoreError(f"Invalid ethereum private key in keychain: {exc}") from exc
