"""Relay dispatcher: fan an inbound message out to every matching route."""

from __future__ import annotations

import asyncio

from loguru import logger

from relaybot.adapters.base import Transport
from relaybot.core.errors import ChannelResolutionError, DeliveryError
from relaybot.formatting.cards import relay_card
from relaybot.gateway.activity import ActivityLog
from relaybot.gateway.notifier import WebhookNotifier
from relaybot.gateway.routes import RouteTable
from relaybot.models import Card, InboundMessage, Route, StatsDelta
from relaybot.storage import Storage


class RelayDispatcher:
    """Transport-agnostic relay core. Each route's delivery succeeds or fails on its own."""

    def __init__(
        self,
        storage: Storage,
        transport: Transport,
        *,
        activity: ActivityLog | None = None,
        notifier: WebhookNotifier | None = None,
        send_timeout: float = 10.0,
    ) -> None:
        self._storage = storage
        self._transport = transport
        self._routes = RouteTable(storage)
        self._activity = activity or ActivityLog(storage)
        self._notifier = notifier
        self._send_timeout = send_timeout

    def is_own_or_bot(self, message: InboundMessage) -> bool:
        if message.author_bot:
            return True
        own_id = self._transport.user_id
        return own_id is not None and message.author_id == own_id

    async def dispatch(self, message: InboundMessage) -> None:
        if self.is_own_or_bot(message):
            return

        matches = await self._routes.matches(message.channel_id)
        if not matches:
            return

        card = relay_card(message)
        await asyncio.gather(*(self._deliver(message, route, destination, card) for route, destination in matches))

    async def _deliver(self, message: InboundMessage, route: Route, destination_id: str, card: Card) -> bool:
        """Deliver to one destination. Returns True when the send succeeded."""
        try:
            destination = await asyncio.wait_for(
                self._transport.resolve_channel(destination_id),
                timeout=self._send_timeout,
            )
        except ChannelResolutionError as exc:
            await self._activity.record(
                "ERROR",
                f"Failed to relay message {message.message_id} via route {route.id}: "
                f"destination channel {destination_id} not found ({exc})",
                channel_id=destination_id,
                user_id=message.author_id,
            )
            return False
        except TimeoutError:
            await self._activity.record(
                "ERROR",
                f"Failed to relay message {message.message_id} via route {route.id}: "
                f"resolving destination channel {destination_id} timed out",
                channel_id=destination_id,
                user_id=message.author_id,
            )
            return False
        except Exception as exc:
            logger.exception("Unexpected failure resolving {}: {}", destination_id, exc)
            await self._activity.record(
                "ERROR",
                f"Failed to relay message {message.message_id} via route {route.id}: "
                f"resolving destination channel {destination_id} failed ({exc.__class__.__name__}: {exc})",
                channel_id=destination_id,
                user_id=message.author_id,
            )
            return False

        # Pacing waits happen outside the send timeout
        await self._transport.pace()
        try:
            await asyncio.wait_for(self._transport.send(destination, card=card), timeout=self._send_timeout)
        except DeliveryError as exc:
            reason = str(exc)
        except TimeoutError:
            reason = f"send timed out after {self._send_timeout:g}s"
        except Exception as exc:
            logger.exception("Unexpected send failure to {}: {}", destination_id, exc)
            reason = f"{exc.__class__.__name__}: {exc}"
        else:
            reason = None

        if reason is not None:
            await self._activity.record(
                "ERROR",
                f"Failed to relay message {message.message_id} to channel {destination_id} "
                f"via route {route.id}: {reason}",
                channel_id=destination_id,
                user_id=message.author_id,
            )
            return False

        await self._storage.apply_stats_delta(StatsDelta(messages_relayed=1, api_calls=1))
        source_name = message.channel_name or message.channel_id
        await self._activity.record(
            "RELAY",
            f"Message relayed from #{source_name} ({message.channel_id}) to #{destination.name} "
            f"({destination.id}) (ID: {message.message_id})",
            channel_id=message.channel_id,
            user_id=message.author_id,
        )
        if self._notifier:
            self._notifier.schedule(
                {
                    "route_id": route.id,
                    "author": message.author_display,
                    "content": message.content,
                    "source_channel_id": message.channel_id,
                    "target_channel_id": destination.id,
                    "original_message_id": message.message_id,
                    "timestamp": message.created_at.isoformat(),
                }
            )
        return True
