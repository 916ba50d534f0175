"""
Client for the Safe Transaction Service REST API.

The service stores proposed multi-sig transactions and collects owner
confirmations until the threshold is reached; it is the only place pending
proposals live.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp

from .constants import PENDING_LIST_LIMIT, RELAY_TIMEOUT_SECONDS, ZERO_ADDRESS
from .exceptions import RelayError
from .safe_tx import SafeTransaction


@dataclass(frozen=True)
class Confirmation:
    owner: str
    signature: Optional[str] = None


@dataclass(frozen=True)
class ProposalRecord:
    """A pending multi-sig transaction as reported by the service."""

    safe_tx_hash: str
    nonce: int
    to: Optional[str] = None
    value: int = 0
    data: Optional[str] = None
    confirmations: List[Confirmation] = field(default_factory=list)
    confirmations_required: Optional[int] = None

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "ProposalRecord":
        confirmations = [
            Confirmation(owner=item.get("owner", ""), signature=item.get("signature"))
            for item in payload.get("confirmations") or []
        ]
        required = payload.get("confirmationsRequired")
        return cls(
            safe_tx_hash=payload["safeTxHash"],
            nonce=int(payload["nonce"]),
            to=payload.get("to"),
            value=int(payload.get("value") or 0),
            data=payload.get("data"),
            confirmations=confirmations,
            confirmations_required=int(required) if required is not None else None,
        )


class RelayClient:
    """Submits proposals and confirmations, lists pending transactions."""

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = RELAY_TIMEOUT_SECONDS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api_url = f"{base_url.rstrip('/')}/api/v1"
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._logger = logger or logging.getLogger("relay_client")

    @asynccontextmanager
    async def _session_scope(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self._session is not None:
            yield self._session
            return
        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            yield session

    async def propose(
        self,
        safe_address: str,
        tx: SafeTransaction,
        safe_tx_hash: str,
        signature: str,
        sender: str,
    ) -> int:
        """Submit a signed proposal; return the HTTP status of the service."""
        url = f"{self.api_url}/safes/{safe_address}/multisig-transactions/"
        body = {
            "to": tx.to,
            "value": str(tx.value),
            "data": tx.data_hex,
            "operation": tx.operation,
            "safeTxGas": "0",
            "baseGas": "0",
            "gasPrice": "0",
            "gasToken": ZERO_ADDRESS,
            "refundReceiver": ZERO_ADDRESS,
            "nonce": str(tx.nonce),
            "contractTransactionHash": safe_tx_hash,
            "sender": sender,
            "signature": signature,
        }
        self._logger.debug("POST %s nonce=%s hash=%s", url, tx.nonce, safe_tx_hash)
        async with self._session_scope() as session:
            async with session.post(url, json=body) as resp:
                if not 200 <= resp.status < 300:
                    raise RelayError(
                        "Transaction Service error", resp.status, await resp.text()
                    )
                return resp.status

    async def confirm(self, safe_tx_hash: str, signature: str) -> int:
        """Add a confirmation (owner signature) to an existing proposal."""
        url = f"{self.api_url}/multisig-transactions/{safe_tx_hash}/confirmations/"
        async with self._session_scope() as session:
            async with session.post(url, json={"signature": signature}) as resp:
                if not 200 <= resp.status < 300:
                    raise RelayError("Confirmation error", resp.status, await resp.text())
                return resp.status

    async def list_pending(
        self, safe_address: str, limit: int = PENDING_LIST_LIMIT
    ) -> List[ProposalRecord]:
        """Return unexecuted proposals for the Safe."""
        url = f"{self.api_url}/safes/{safe_address}/multisig-transactions/"
        params = {"executed": "false", "limit": str(limit)}
        async with self._session_scope() as session:
            async with session.get(url, params=params) as resp:
                if not 200 <= resp.status < 300:
                    raise RelayError(
                        "Failed to fetch pending txs", resp.status, await resp.text()
                    )
                payload = await resp.json()
        return [ProposalRecord.from_json(item) for item in (payload or {}).get("results") or []]
