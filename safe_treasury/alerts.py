"""Webhook alerts (Slack, Discord, ...) for unattended refill runs."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import aiohttp

from .constants import ALERT_PREFIX, ALERT_TIMEOUT_SECONDS


class AlertSink:
    """Posts alerts to a webhook. Delivery failures are logged, never raised."""

    def __init__(
        self,
        webhook_url: Optional[str],
        session: Optional[aiohttp.ClientSession] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.webhook_url = webhook_url
        self._session = session
        self._logger = logger or logging.getLogger("alerts")

    @staticmethod
    def build_payload(message: str, severity: str = "error") -> Dict[str, Any]:
        return {
            "text": f"{ALERT_PREFIX} [{severity.upper()}] {message}",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "severity": severity,
        }

    async def send(self, message: str, severity: str = "error") -> bool:
        """Deliver one alert; return True when the webhook accepted it."""
        payload = self.build_payload(message, severity)
        if not self.webhook_url:
            self._logger.warning("ALERT (no webhook configured): %s", payload["text"])
            return False
        try:
            if self._session is not None:
                return await self._post(self._session, payload)
            timeout = aiohttp.ClientTimeout(total=ALERT_TIMEOUT_SECONDS)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                return await self._post(session, payload)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            self._logger.warning("Failed to send alert: %s", exc)
            return False

    async def _post(self, session: aiohttp.ClientSession, payload: Dict[str, Any]) -> bool:
        async with session.post(self.webhook_url, json=payload) as resp:
            if not 200 <= resp.status < 300:
                self._logger.warning("Alert webhook returned %s", resp.status)
                return False
            return True
