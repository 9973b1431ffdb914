"""Telemetry events for domain squatting detections.

Sinks are fire-and-forget: delivery failures are logged and never propagate
into the scan scheduler.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

import aiohttp

from .utils.domains import registered_domain

if TYPE_CHECKING:
    from .analyzer.squatting import SquattingVerdict

logger = logging.getLogger(__name__)

SQUATTING_EVENT = "domain_squatting_detected"


def build_squatting_event(verdict: "SquattingVerdict", url: str) -> dict:
    """Build the ``domain_squatting_detected`` event for a verdict."""
    return {
        "event": SQUATTING_EVENT,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "url": url,
        "registered_domain": registered_domain(url),
        **verdict.to_dict(),
    }


class LoggingTelemetrySink:
    """Writes events to the log and keeps the most recent ones in memory."""

    def __init__(self, keep: int = 100):
        self.recent: deque[dict] = deque(maxlen=keep)

    def emit(self, event: dict) -> None:
        self.recent.append(event)
        logger.info("Telemetry %s: %s", event.get("event"), json.dumps(event, sort_keys=True))


class WebhookTelemetrySink:
    """POSTs events as JSON to a webhook URL in the background."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        headers: Optional[dict[str, str]] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.headers = headers or {}
        self.sent = 0
        self.failed = 0
        self._session: Optional[aiohttp.ClientSession] = None
        self._pending: set[asyncio.Task] = set()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    def emit(self, event: dict) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Dropping %s event: no running event loop", event.get("event"))
            self.failed += 1
            return
        task = loop.create_task(self._post(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _post(self, event: dict) -> bool:
        try:
            session = await self._get_session()
            async with session.post(self.url, json=event, headers=self.headers) as resp:
                if resp.status >= 400:
                    logger.warning("Telemetry webhook returned HTTP %s", resp.status)
                    self.failed += 1
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("Telemetry webhook delivery failed: %s", e)
            self.failed += 1
            return False
        self.sent += 1
        return True

    async def flush(self) -> None:
        """Wait for in-flight deliveries."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.flush()
        if self._session and not self._session.closed:
            await self._session.close()
