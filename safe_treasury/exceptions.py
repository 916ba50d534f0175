"""Error types raised by the Safe treasury tools."""

from __future__ import annotations

from typing import Optional


class TreasuryError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(TreasuryError):
    """Operator input was rejected before any network call was made."""


class ConfigurationError(TreasuryError):
    """Required configuration is missing or malformed."""


class SecretStoreError(TreasuryError):
    """The signing key could not be read from the keychain."""


class NonceConflictError(TreasuryError):
    """A pending proposal already occupies the Safe's current nonce."""

    def __init__(
        self, nonce: int, safe_tx_hash: str, to: Optional[str], value: int
    ) -> None:
        self.nonce = nonce
        self.safe_tx_hash = safe_tx_hash
        self.to = to
        self.value = value
        super().__init__(
            f"Pending transaction already exists at nonce {nonce}: {safe_tx_hash}"
        )


class RelayError(TreasuryError):
    """The Safe Transaction Service answered with a non-2xx status."""

    def __init__(self, context: str, status: int, body: str) -> None:
        self.status = status
        self.body = body
        super().__init__(f"{context} ({status}): {body}")


class SignatureIntegrityError(TreasuryError):
    """A signature's recovery byte is not 31/32 after eth_sign adjustment."""


class SimulationFailure(TreasuryError):
    """An eth_call dry run of an allowance transfer reverted."""


class ExecutionFailure(TreasuryError):
    """A broadcast allowance transfer was included but reverted."""

    def __init__(self, tx_hash: str) -> None:
        self.tx_hash = tx_hash
        super().__init__(f"Transaction {tx_hash} reverted")


class FatalMisconfiguration(TreasuryError):
    """The delegate/module setup is broken; retrying would only waste gas."""
