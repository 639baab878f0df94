"""Session quota guard: check remaining gateway session starts before connecting."""

from __future__ import annotations

import math
from typing import Any

import httpx
from loguru import logger

from relaybot.core.constants import DISCORD_API_BASE
from relaybot.core.errors import PreflightError, QuotaExhaustedError


class SessionQuotaGuard:
    """Queries GET /gateway/bot. Never retries; callers decide what to do with failures."""

    def __init__(
        self,
        api_base: str = DISCORD_API_BASE,
        *,
        timeout: float = 10.0,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._http_transport = http_transport

    async def fetch_session_limit(self, token: str) -> dict[str, Any] | None:
        """Return session_start_limit from the platform, or None if absent."""
        url = f"{self._api_base}/gateway/bot"
        headers = {"Authorization": f"Bot {token}", "Accept": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._http_transport) as client:
                resp = await client.get(url, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise PreflightError(
                f"Session quota preflight rejected: HTTP {exc.response.status_code}",
                code="preflight_http_status",
                details={"status": exc.response.status_code},
                original_error=exc,
            ) from exc
        except httpx.HTTPError as exc:
            raise PreflightError(
                f"Session quota preflight failed: {exc.__class__.__name__}",
                code="preflight_transport",
                original_error=exc,
            ) from exc
        except ValueError as exc:
            raise PreflightError(
                "Session quota preflight returned invalid JSON",
                code="preflight_invalid_body",
                original_error=exc,
            ) from exc

        if not isinstance(data, dict):
            raise PreflightError("Session quota preflight returned unexpected body", code="preflight_invalid_body")
        limit = data.get("session_start_limit")
        return limit if isinstance(limit, dict) else None

    async def ensure_session_available(self, token: str) -> None:
        """Raise QuotaExhaustedError when no session starts remain, PreflightError when unknown."""
        limit = await self.fetch_session_limit(token)
        if limit is None:
            logger.debug("Session quota: no session_start_limit in response; proceeding")
            return
        try:
            remaining = int(limit.get("remaining", 0))
            reset_after_ms = float(limit.get("reset_after", 0) or 0)
        except (TypeError, ValueError) as exc:
            raise PreflightError(
                "Session quota preflight returned malformed session_start_limit",
                code="preflight_invalid_body",
                details={"session_start_limit": limit},
                original_error=exc,
            ) from exc

        logger.debug("Session quota: {} of {} session starts remaining", remaining, limit.get("total", "?"))
        if remaining <= 0:
            retry_after = max(1, math.ceil(reset_after_ms / 1000))
            raise QuotaExhaustedError(
                f"No session starts remaining. Try again in ~{retry_after}s",
                retry_after=retry_after,
                details={"reset_after_ms": reset_after_ms, "total": limit.get("total")},
            )
