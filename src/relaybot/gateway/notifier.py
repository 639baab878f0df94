"""Outbound webhook: best-effort POST of each successful relay."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
from loguru import logger
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

WEBHOOK_RETRY = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(
        (
            httpx.ConnectError,
            httpx.ConnectTimeout,
            httpx.ReadTimeout,
            httpx.WriteTimeout,
            httpx.PoolTimeout,
        )
    ),
    reraise=True,
)


class WebhookNotifier:
    """Posts relay payloads to an optional URL. Failures are logged, never raised."""

    def __init__(
        self,
        url: str | None = None,
        *,
        timeout: float = 10.0,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self._timeout = timeout
        self._http_transport = http_transport
        self._tasks: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    @WEBHOOK_RETRY
    async def _post(self, url: str, payload: dict[str, Any]) -> None:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._http_transport) as client:
            resp = await client.post(url, json=payload)
            resp.raise_for_status()

    async def notify(self, payload: dict[str, Any]) -> bool:
        """POST payload. Returns True on success."""
        url = self.url
        if not url:
            return False
        try:
            await self._post(url, payload)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("Webhook notify to {} failed: {}", url, exc)
            return False
        return True

    def schedule(self, payload: dict[str, Any]) -> None:
        """Fire-and-forget notify, so relays never wait on the webhook."""
        if not self.enabled:
            return
        task = asyncio.create_task(self.notify(payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for pending notifications (shutdown, tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
