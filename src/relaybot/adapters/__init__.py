"""Platform transports."""

from relaybot.adapters.base import DisconnectHandler, MessageHandler, Transport

__all__ = ["DisconnectHandler", "MessageHandler", "Transport"]
