"""RelayService: built once at startup and handed to the transport binding and control surface."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from loguru import logger

from relaybot.adapters.base import Transport
from relaybot.config import Config
from relaybot.gateway import (
    ActivityLog,
    CommandHandler,
    ConnectionSupervisor,
    RelayDispatcher,
    SessionQuotaGuard,
    WebhookNotifier,
)
from relaybot.models import ConnectionStatus, InboundMessage, Route, RouteCreate, Stats
from relaybot.storage import FileStorage, MemoryStorage, Storage


def build_storage(config: Config) -> Storage:
    """FileStorage when storage_path is configured, else MemoryStorage."""
    if config.storage_path:
        return FileStorage(config.storage_path, activity_log_max=config.activity_log_max)
    logger.warning("storage_path not set; routes and stats are kept in memory only")
    return MemoryStorage(activity_log_max=config.activity_log_max)


class RelayService:
    """Wires storage, transport and the relay core together."""

    def __init__(
        self,
        config: Config,
        storage: Storage,
        transport: Transport,
        *,
        quota_guard: SessionQuotaGuard | None = None,
        notifier: WebhookNotifier | None = None,
        on_log_level: Callable[[str], None] | None = None,
    ) -> None:
        self.config = config
        self.storage = storage
        self.transport = transport
        # Applies the persisted log_level to the process logging setup
        self.on_log_level = on_log_level
        self.activity = ActivityLog(storage)
        self.notifier = notifier or WebhookNotifier(timeout=config.send_timeout_seconds)
        self.supervisor = ConnectionSupervisor(
            storage,
            transport,
            quota_guard
            or SessionQuotaGuard(config.discord_api_base, timeout=config.preflight_timeout_seconds),
            activity=self.activity,
            token_override=config.token_override,
            connect_timeout=config.connect_timeout_seconds,
            reconnect_max_attempts=config.reconnect_max_attempts,
            reconnect_backoff_min=config.reconnect_backoff_min,
            reconnect_backoff_max=config.reconnect_backoff_max,
        )
        self.dispatcher = RelayDispatcher(
            storage,
            transport,
            activity=self.activity,
            notifier=self.notifier,
            send_timeout=config.send_timeout_seconds,
        )
        self.commands = CommandHandler(
            storage,
            transport,
            status_provider=self.supervisor.get_status,
            activity=self.activity,
            prefix=config.command_prefix,
            send_timeout=config.send_timeout_seconds,
        )
        transport.set_handlers(
            on_message=self.handle_message,
            on_disconnect=self.supervisor.handle_transport_disconnect,
        )

    async def handle_message(self, message: InboundMessage) -> None:
        """Entry point for every inbound message: command or relay."""
        if self.dispatcher.is_own_or_bot(message):
            return
        command = self.commands.parse(message.content)
        if command is not None:
            await self.commands.handle(message, command)
            return
        await self.dispatcher.dispatch(message)

    async def start(self) -> None:
        """Load persisted settings, then connect."""
        bot_config = await self.storage.get_bot_config()
        self.notifier.url = bot_config.webhook_url
        if self.on_log_level:
            self.on_log_level(bot_config.log_level)
        await self.connect()

    async def stop(self) -> None:
        await self.disconnect()
        await self.notifier.drain()

    # Control surface for the dashboard / API layer

    def get_connection_status(self) -> ConnectionStatus:
        return self.supervisor.get_status()

    async def connect(self) -> None:
        await self.supervisor.connect()

    async def disconnect(self) -> None:
        await self.supervisor.disconnect()

    async def reload_config(self, config: Config | None = None) -> list[str]:
        """Apply new settings without reconnecting. Returns changed field names."""
        if config is not None:
            self.config = config
            self.commands.prefix = config.command_prefix
        changed = await self.supervisor.reload_config(token_override=self.config.token_override)
        if "webhook_url" in changed or "log_level" in changed:
            bot_config = await self.storage.get_bot_config()
            if "webhook_url" in changed:
                self.notifier.url = bot_config.webhook_url
            if "log_level" in changed and self.on_log_level:
                self.on_log_level(bot_config.log_level)
        return changed

    async def update_uptime(self) -> Stats:
        await self.supervisor.update_uptime()
        return await self.storage.get_stats()

    async def create_route(self, data: RouteCreate) -> Route:
        route = await self.storage.create_route(data)
        await self.activity.record("INFO", f"New relay created: {route.name} (ID: {route.id})")
        return route

    async def update_route(self, route_id: str, **patch: Any) -> Route | None:
        route = await self.storage.update_route(route_id, **patch)
        if route is not None:
            await self.activity.record("INFO", f"Relay updated: {route.name} (ID: {route.id})")
        return route

    async def delete_route(self, route_id: str) -> bool:
        removed = await self.storage.delete_route(route_id)
        if removed:
            await self.activity.record("INFO", f"Relay removed: {route_id}")
        return removed
