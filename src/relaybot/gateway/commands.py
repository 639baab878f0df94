"""In-channel command language: <prefix> status | add | remove | test."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from loguru import logger

from relaybot.adapters.base import Transport
from relaybot.core.constants import BIDIRECTIONAL_TOKENS, DEFAULT_COMMAND_PREFIX, SUBCOMMANDS, TEST_MESSAGE
from relaybot.core.errors import ChannelResolutionError, DeliveryError, RouteValidationError
from relaybot.formatting.cards import status_card
from relaybot.gateway.activity import ActivityLog
from relaybot.gateway.routes import RouteTable
from relaybot.models import Card, ConnectionStatus, InboundMessage, RouteCreate, StatsDelta
from relaybot.storage import Storage

UNKNOWN_COMMAND_REPLY = f"Unknown command. Available commands: {', '.join(SUBCOMMANDS)}"


def _describe(exc: BaseException) -> str:
    if isinstance(exc, TimeoutError):
        return "timed out"
    return str(exc) or exc.__class__.__name__


@dataclass(frozen=True)
class ParsedCommand:
    name: str
    args: tuple[str, ...] = ()


def parse_command(content: str, prefix: str = DEFAULT_COMMAND_PREFIX) -> ParsedCommand | None:
    """Parse '<prefix> <sub> args...'. None when content is not a command."""
    tokens = content.split()
    if not tokens or tokens[0] != prefix:
        return None
    if len(tokens) == 1:
        return ParsedCommand("")
    return ParsedCommand(tokens[1].lower(), tuple(tokens[2:]))


class CommandHandler:
    """Runs commands. Every invocation counts one API call and one CMD entry up front."""

    def __init__(
        self,
        storage: Storage,
        transport: Transport,
        *,
        status_provider: Callable[[], ConnectionStatus],
        activity: ActivityLog | None = None,
        prefix: str = DEFAULT_COMMAND_PREFIX,
        send_timeout: float = 10.0,
    ) -> None:
        self._storage = storage
        self._transport = transport
        self._routes = RouteTable(storage)
        self._status_provider = status_provider
        self._activity = activity or ActivityLog(storage)
        self.prefix = prefix
        self._send_timeout = send_timeout

    def parse(self, content: str) -> ParsedCommand | None:
        return parse_command(content, self.prefix)

    async def handle(self, message: InboundMessage, command: ParsedCommand | None = None) -> None:
        command = command or self.parse(message.content)
        if command is None:
            return

        await self._storage.apply_stats_delta(StatsDelta(api_calls=1))
        await self._activity.record(
            "CMD",
            f"User @{message.author_display} executed command: {self.prefix} {command.name}".rstrip(),
            channel_id=message.channel_id,
            user_id=message.author_id,
        )

        if command.name == "status":
            await self._cmd_status(message)
        elif command.name == "add":
            await self._cmd_add(message, command.args)
        elif command.name == "remove":
            await self._cmd_remove(message, command.args)
        elif command.name == "test":
            await self._cmd_test(message)
        else:
            await self._reply(message, content=UNKNOWN_COMMAND_REPLY)

    async def _reply(self, message: InboundMessage, *, content: str | None = None, card: Card | None = None) -> None:
        await self._transport.pace()
        try:
            await asyncio.wait_for(
                self._transport.reply(message, content=content, card=card),
                timeout=self._send_timeout,
            )
        except (DeliveryError, TimeoutError) as exc:
            logger.warning("Command reply in {} failed: {}", message.channel_id, _describe(exc))

    async def _cmd_status(self, message: InboundMessage) -> None:
        status = self._status_provider()
        stats = await self._storage.get_stats()
        active = len(await self._routes.active_routes())
        card = status_card(connected=status.connected, uptime=status.uptime, active_routes=active, stats=stats)
        await self._reply(message, card=card)

    async def _cmd_add(self, message: InboundMessage, args: tuple[str, ...]) -> None:
        if len(args) < 2:
            await self._reply(
                message,
                content=f"Usage: {self.prefix} add <source_channel_id> <target_channel_id> [bidirectional]",
            )
            return

        source_id, target_id = args[0], args[1]
        bidirectional = len(args) > 2 and args[2].lower() in BIDIRECTIONAL_TOKENS
        if source_id == target_id:
            await self._reply(message, content="❌ Source and target channels must be different.")
            return

        try:
            source = await asyncio.wait_for(self._transport.resolve_channel(source_id), timeout=self._send_timeout)
            target = await asyncio.wait_for(self._transport.resolve_channel(target_id), timeout=self._send_timeout)
            route = await self._storage.create_route(
                RouteCreate(
                    name=f"{source.name} → {target.name}",
                    source_channel_id=source_id,
                    target_channel_id=target_id,
                    source_channel_name=source.name,
                    target_channel_name=target.name,
                    bidirectional=bidirectional,
                    active=True,
                )
            )
        except (ChannelResolutionError, RouteValidationError, TimeoutError) as exc:
            await self._reply(message, content="❌ Failed to create relay. Check channel IDs and permissions.")
            await self._activity.record(
                "ERROR",
                f"Failed to create relay {source_id} -> {target_id}: {_describe(exc)}",
                channel_id=message.channel_id,
                user_id=message.author_id,
            )
            return

        await self._reply(message, content=f"✅ Relay created: {route.name} (ID: {route.id})")
        await self._activity.record(
            "INFO",
            f"New relay created: {route.name} (ID: {route.id})",
            channel_id=message.channel_id,
            user_id=message.author_id,
        )

    async def _cmd_remove(self, message: InboundMessage, args: tuple[str, ...]) -> None:
        if not args:
            await self._reply(message, content=f"Usage: {self.prefix} remove <relay_id>")
            return

        route_id = args[0]
        if await self._storage.delete_route(route_id):
            await self._reply(message, content="✅ Relay removed successfully.")
            await self._activity.record(
                "INFO",
                f"Relay removed: {route_id}",
                channel_id=message.channel_id,
                user_id=message.author_id,
            )
        else:
            await self._reply(message, content="❌ Relay not found.")

    async def _cmd_test(self, message: InboundMessage) -> None:
        routes = await self._routes.active_routes()
        if not routes:
            await self._reply(message, content="No active relays to test.")
            return

        # Test sends count toward neither messages_relayed nor api_calls beyond the invocation
        text = f"{TEST_MESSAGE} - {datetime.now().astimezone():%Y-%m-%d %H:%M:%S %Z}"
        for route in routes:
            try:
                channel = await asyncio.wait_for(
                    self._transport.resolve_channel(route.target_channel_id),
                    timeout=self._send_timeout,
                )
                await self._transport.pace()
                await asyncio.wait_for(self._transport.send(channel, content=text), timeout=self._send_timeout)
            except (ChannelResolutionError, DeliveryError, TimeoutError) as exc:
                await self._activity.record(
                    "ERROR",
                    f"Failed to send test message to {route.target_channel_id} "
                    f"(route {route.id}): {_describe(exc)}",
                    channel_id=route.target_channel_id,
                    user_id=message.author_id,
                )

        await self._reply(message, content=f"✅ Test messages sent to {len(routes)} relay(s).")
        await self._activity.record(
            "INFO",
            f"Test messages sent to {len(routes)} relays",
            channel_id=message.channel_id,
            user_id=message.author_id,
        )
