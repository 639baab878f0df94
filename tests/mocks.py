"""Mock transport and helpers for testing the relay core without a Discord connection."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

from relaybot.adapters.base import Transport
from relaybot.core.errors import ChannelResolutionError, DeliveryError, TransportDisconnect
from relaybot.gateway.quota import SessionQuotaGuard
from relaybot.models import Card, ChannelHandle, InboundMessage, Route, RouteCreate
from relaybot.storage import MemoryStorage


class MockTransport(Transport):
    """Transport that records sends and replies instead of talking to a platform."""

    def __init__(self, channels: dict[str, str] | None = None, *, user_id: str | None = "bot-1") -> None:
        super().__init__()
        # channel id -> channel name; ids not listed fail to resolve
        self.channels: dict[str, str] = dict(channels or {})
        self.fail_send: set[str] = set()
        self.send_delay: float = 0.0
        # per-send wait taken in pace(), serialized like a real send bucket
        self.pace_delay: float = 0.0
        self.pace_calls = 0
        self._pace_lock = asyncio.Lock()
        self.sent: list[tuple[str, str | None, Card | None]] = []
        self.replies: list[tuple[InboundMessage, str | None, Card | None]] = []
        self.opened_with: list[str] = []
        self.open_error: BaseException | None = None
        self.open_delay: float = 0.0
        self.close_calls = 0
        self.rate_limit: str | None = None
        self._user_id = user_id

    @property
    def name(self) -> str:
        return "mock"

    @property
    def user_id(self) -> str | None:
        return self._user_id

    def set_rate_limit(self, posture: str) -> None:
        self.rate_limit = posture

    async def pace(self) -> None:
        async with self._pace_lock:
            self.pace_calls += 1
            if self.pace_delay:
                await asyncio.sleep(self.pace_delay)

    async def open(self, token: str) -> None:
        self.opened_with.append(token)
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.open_error is not None:
            raise self.open_error

    async def close(self) -> None:
        self.close_calls += 1

    async def resolve_channel(self, channel_id: str) -> ChannelHandle:
        if channel_id not in self.channels:
            raise ChannelResolutionError(channel_id)
        return ChannelHandle(id=channel_id, name=self.channels[channel_id])

    async def send(self, channel: ChannelHandle, *, content: str | None = None, card: Card | None = None) -> str:
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if channel.id in self.fail_send:
            raise DeliveryError(channel.id, "Missing Permissions")
        self.sent.append((channel.id, content, card))
        return f"sent-{len(self.sent)}"

    async def reply(self, message: InboundMessage, *, content: str | None = None, card: Card | None = None) -> None:
        self.replies.append((message, content, card))

    @property
    def sent_to(self) -> list[str]:
        return [channel_id for channel_id, _, _ in self.sent]

    @property
    def reply_texts(self) -> list[str | None]:
        return [content for _, content, _ in self.replies]

    async def disconnect_unexpectedly(self, reason: str = "connection reset") -> None:
        """Simulate the platform dropping the gateway."""
        if self._disconnect_handler:
            await self._disconnect_handler(TransportDisconnect(reason, code="gateway_closed"))


def make_message(
    channel_id: str = "C1",
    content: str = "hello",
    *,
    author_id: str = "u1",
    author_display: str = "alice",
    author_bot: bool = False,
    channel_name: str | None = None,
    message_id: str = "m1",
) -> InboundMessage:
    return InboundMessage(
        message_id=message_id,
        channel_id=channel_id,
        channel_name=channel_id if channel_name is None else channel_name,
        author_id=author_id,
        author_display=author_display,
        author_bot=author_bot,
        content=content,
    )


def make_quota_guard(*, side_effect: BaseException | None = None) -> AsyncMock:
    """Quota guard mock; ensure_session_available succeeds unless side_effect is given."""
    guard = AsyncMock(spec=SessionQuotaGuard)
    guard.ensure_session_available.side_effect = side_effect
    return guard


async def add_route(
    storage: MemoryStorage,
    source: str,
    target: str,
    *,
    bidirectional: bool = False,
    active: bool = True,
) -> Route:
    return await storage.create_route(
        RouteCreate(
            source_channel_id=source,
            target_channel_id=target,
            bidirectional=bidirectional,
            active=active,
        )
    )
