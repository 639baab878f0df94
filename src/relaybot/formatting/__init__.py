"""Text and card formatting for relay output."""

from relaybot.formatting.cards import relay_card, status_card
from relaybot.formatting.text import format_uptime, mask_token

__all__ = ["format_uptime", "mask_token", "relay_card", "status_card"]
