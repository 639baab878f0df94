"""Connection supervisor: token selection, quota preflight, connect/disconnect, reconnect."""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable
from typing import Any

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from relaybot.adapters.base import Transport
from relaybot.core.constants import BotStatus
from relaybot.core.errors import (
    ConfigurationError,
    ConnectionFailedError,
    PreflightError,
    QuotaExhaustedError,
    TransportDisconnect,
)
from relaybot.formatting.text import format_uptime, mask_token
from relaybot.gateway.activity import ActivityLog
from relaybot.gateway.quota import SessionQuotaGuard
from relaybot.models import BotConfig, ConnectionStatus, StatsDelta, utcnow
from relaybot.storage import Storage

# Settings reload_config() reports on
RELOADABLE_FIELDS = ("token", "rate_limit", "log_level", "auto_reconnect", "webhook_url")

_UNSET: Any = object()


class ConnectionSupervisor:
    """Owns the offline -> connecting -> online state machine. Transitions are serialized."""

    def __init__(
        self,
        storage: Storage,
        transport: Transport,
        quota_guard: SessionQuotaGuard,
        *,
        activity: ActivityLog | None = None,
        token_override: str | None = None,
        connect_timeout: float = 30.0,
        reconnect_max_attempts: int = 5,
        reconnect_backoff_min: float = 2.0,
        reconnect_backoff_max: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._storage = storage
        self._transport = transport
        self._quota = quota_guard
        self._activity = activity or ActivityLog(storage)
        self._token_override = (token_override or "").strip() or None
        self._connect_timeout = connect_timeout
        self._max_attempts = max(1, reconnect_max_attempts)
        self._backoff_min = reconnect_backoff_min
        self._backoff = wait_exponential(multiplier=1, min=reconnect_backoff_min, max=reconnect_backoff_max)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._state: BotStatus = "offline"
        self._started_at: float | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._settings: dict[str, Any] | None = None

    @property
    def state(self) -> BotStatus:
        return self._state

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def _uptime(self) -> str:
        if self._state != "online" or self._started_at is None:
            return "0m"
        return format_uptime(self._clock() - self._started_at)

    def get_status(self) -> ConnectionStatus:
        return ConnectionStatus(connected=self._state == "online", state=self._state, uptime=self._uptime())

    async def update_uptime(self) -> str:
        uptime = self._uptime()
        await self._storage.apply_stats_delta(StatsDelta(uptime=uptime))
        return uptime

    async def resolve_token(self) -> str:
        """Effective token: override beats persisted; a differing override is persisted first."""
        config = await self._storage.get_bot_config()
        persisted = (config.token or "").strip() or None
        override = self._token_override
        if override and override != persisted:
            await self._storage.update_bot_config(token=override)
            logger.info("Persisted token override {} to bot config", mask_token(override))
        token = override or persisted
        if not token:
            raise ConfigurationError(
                "Bot token not configured. Set DISCORD_BOT_TOKEN or update the persisted bot token.",
                code="missing_token",
            )
        return token

    def _snapshot(self, config: BotConfig) -> dict[str, Any]:
        return {
            "token": self._token_override or (config.token or "").strip() or None,
            "rate_limit": config.rate_limit,
            "log_level": config.log_level,
            "auto_reconnect": config.auto_reconnect,
            "webhook_url": config.webhook_url,
        }

    async def _set_status(self, status: BotStatus) -> None:
        self._state = status
        await self._storage.apply_stats_delta(StatsDelta(status=status))

    async def _fail(self, message: str) -> None:
        self._started_at = None
        await self._set_status("offline")
        await self._activity.record("ERROR", message)

    async def connect(self) -> None:
        """Connect unless already online. Raises ConfigurationError, QuotaExhaustedError,
        PreflightError or ConnectionFailedError; the quota error is never retried here."""
        async with self._lock:
            if self._state == "online":
                logger.debug("connect(): already online")
                return
            await self._connect_locked()

    async def _connect_locked(self) -> None:
        try:
            token = await self.resolve_token()
        except ConfigurationError as exc:
            await self._activity.record("ERROR", f"Cannot connect: {exc}")
            raise

        config = await self._storage.get_bot_config()
        self._settings = self._snapshot(config)
        self._transport.set_rate_limit(config.rate_limit)

        logger.info("Connecting to {} with token {}", self._transport.name, mask_token(token))
        await self._set_status("connecting")

        try:
            await self._quota.ensure_session_available(token)
        except QuotaExhaustedError as exc:
            await self._fail(f"Connect aborted: session start quota exhausted; retry after {exc.retry_after:g}s")
            raise
        except PreflightError as exc:
            await self._fail(f"Connect aborted: session quota preflight failed: {exc}")
            raise

        try:
            await asyncio.wait_for(self._transport.open(token), timeout=self._connect_timeout)
        except ConnectionFailedError as exc:
            await self._fail(f"Connect failed: {exc}")
            raise
        except TimeoutError as exc:
            await self._transport.close()
            await self._fail(f"Connect failed: handshake timed out after {self._connect_timeout:g}s")
            raise ConnectionFailedError(
                "Gateway handshake timed out",
                code="handshake_timeout",
                original_error=exc,
            ) from exc
        except Exception as exc:
            logger.exception("Transport open raised: {}", exc)
            await self._transport.close()
            await self._fail(f"Connect failed: {exc.__class__.__name__}: {exc}")
            raise ConnectionFailedError(str(exc), code="transport_error", original_error=exc) from exc

        self._started_at = self._clock()
        self._state = "online"
        await self._storage.apply_stats_delta(StatsDelta(status="online", uptime="0m"))
        await self._storage.update_bot_config(last_connected_at=utcnow())
        await self._activity.record("INFO", f"Bot connected to {self._transport.name} gateway")

    async def disconnect(self) -> None:
        """Close the connection and go offline. Idempotent."""
        await self._cancel_reconnect()
        async with self._lock:
            was = self._state
            await self._transport.close()
            self._started_at = None
            await self._set_status("offline")
            if was != "offline":
                await self._activity.record("INFO", "Bot disconnected")

    async def handle_transport_disconnect(self, error: TransportDisconnect) -> None:
        """Unexpected drop: go offline, log WARN, schedule a reconnect if configured."""
        async with self._lock:
            if self._state != "online":
                return
            self._started_at = None
            await self._set_status("offline")
            await self._activity.record("WARN", f"Bot disconnected unexpectedly: {error}")
            config = await self._storage.get_bot_config()
            if config.auto_reconnect:
                self._schedule_reconnect()
            else:
                logger.info("Auto-reconnect disabled; staying offline until connect()")

    def _schedule_reconnect(self) -> None:
        if self.reconnect_pending:
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _reconnect_wait(self, retry_state: RetryCallState) -> float:
        """Exponential back-off, never shorter than a quota error's retry_after."""
        wait = self._backoff(retry_state)
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, QuotaExhaustedError):
            wait = max(wait, float(exc.retry_after))
        return wait

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        sleep = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            "Reconnect attempt {} failed ({}); next attempt in {:.0f}s",
            retry_state.attempt_number,
            exc,
            sleep,
        )

    async def _reconnect_loop(self) -> None:
        await asyncio.sleep(self._backoff_min)
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=self._reconnect_wait,
                retry=retry_if_exception_type((QuotaExhaustedError, PreflightError, ConnectionFailedError)),
                before_sleep=self._before_sleep,
                reraise=True,
            ):
                with attempt:
                    await self.connect()
        except ConfigurationError:
            logger.error("Reconnect stopped: bot token not configured")
        except (QuotaExhaustedError, PreflightError, ConnectionFailedError) as exc:
            await self._activity.record("ERROR", f"Reconnect gave up after {self._max_attempts} attempts: {exc}")

    async def reload_config(self, *, token_override: str | None = _UNSET) -> list[str]:
        """Re-read bot settings without reconnecting. Returns the names of changed fields."""
        if token_override is not _UNSET:
            self._token_override = (token_override or "").strip() or None
        config = await self._storage.get_bot_config()
        override = self._token_override
        if override and override != (config.token or "").strip():
            config = await self._storage.update_bot_config(token=override)

        current = self._snapshot(config)
        previous = self._settings
        self._settings = current
        if previous is None:
            return []

        changed = sorted(k for k in RELOADABLE_FIELDS if previous.get(k) != current.get(k))
        if "rate_limit" in changed:
            self._transport.set_rate_limit(config.rate_limit)
        if changed:
            await self._activity.record("INFO", f"Configuration reloaded; changed: {', '.join(changed)}")
        return changed
