"""Build transport-agnostic cards for relayed messages and command replies."""

from __future__ import annotations

from relaybot.core.constants import BRAND_COLOR
from relaybot.models import Card, CardField, InboundMessage, Stats


def relay_card(message: InboundMessage) -> Card:
    """Relayed copy: author, original text, source attribution, original timestamp."""
    return Card(
        description=message.content,
        author_name=message.author_display,
        author_icon_url=message.author_avatar_url,
        footer=f"Relayed from #{message.channel_name or message.channel_id}",
        timestamp=message.created_at,
        color=BRAND_COLOR,
    )


def status_card(*, connected: bool, uptime: str, active_routes: int, stats: Stats) -> Card:
    return Card(
        title="Bot Status",
        color=BRAND_COLOR,
        fields=[
            CardField("Status", "🟢 Online" if connected else "🔴 Offline"),
            CardField("Uptime", uptime),
            CardField("Active Relays", str(active_routes)),
            CardField("Messages Relayed", str(stats.messages_relayed)),
            CardField("API Calls", str(stats.api_calls)),
        ],
    )
