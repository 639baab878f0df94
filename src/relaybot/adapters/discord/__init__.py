"""Discord transport package."""

from relaybot.adapters.discord.adapter import DiscordTransport
from relaybot.adapters.discord.embeds import card_to_embed

__all__ = ["DiscordTransport", "card_to_embed"]
