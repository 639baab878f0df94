"""Transport base: the seam between the relay core and a platform client."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

from relaybot.core.errors import TransportDisconnect
from relaybot.models import Card, ChannelHandle, InboundMessage

MessageHandler = Callable[[InboundMessage], Awaitable[None]]
DisconnectHandler = Callable[[TransportDisconnect], Awaitable[None]]


class Transport(ABC):
    """Thin base for platform transports. The relay core only talks to this interface."""

    def __init__(self) -> None:
        self._message_handler: MessageHandler | None = None
        self._disconnect_handler: DisconnectHandler | None = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Transport identifier (e.g. 'discord')."""
        ...

    @property
    @abstractmethod
    def user_id(self) -> str | None:
        """The bot account's own user id once logged in."""
        ...

    def set_handlers(
        self,
        *,
        on_message: MessageHandler | None = None,
        on_disconnect: DisconnectHandler | None = None,
    ) -> None:
        """Register the inbound message entry point and the unexpected-disconnect callback."""
        self._message_handler = on_message
        self._disconnect_handler = on_disconnect

    def set_rate_limit(self, posture: str) -> None:
        """Adjust outbound pacing. Override where the platform needs it."""
        pass

    async def pace(self) -> None:
        """Wait until the next outbound send is allowed. Call before send() or reply()."""
        pass

    @abstractmethod
    async def open(self, token: str) -> None:
        """Log in and complete the gateway handshake. Raise ConnectionFailedError on failure."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Tear down the connection. Safe to call when not connected."""
        ...

    @abstractmethod
    async def resolve_channel(self, channel_id: str) -> ChannelHandle:
        """Resolve a channel id. Raise ChannelResolutionError when missing or inaccessible."""
        ...

    @abstractmethod
    async def send(self, channel: ChannelHandle, *, content: str | None = None, card: Card | None = None) -> str:
        """Send to a channel; return the platform message id. Raise DeliveryError when rejected."""
        ...

    @abstractmethod
    async def reply(self, message: InboundMessage, *, content: str | None = None, card: Card | None = None) -> None:
        """Reply to an inbound message. Raise DeliveryError when rejected."""
        ...
