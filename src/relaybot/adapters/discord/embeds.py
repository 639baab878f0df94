"""Card -> discord.Embed conversion and inbound message mapping."""

from __future__ import annotations

from discord import AllowedMentions, Embed, Message

from relaybot.models import Card, InboundMessage

# Relayed text must not ping anyone in the destination channel
ALLOWED_MENTIONS = AllowedMentions.none()

EMBED_DESCRIPTION_MAX = 4096


def card_to_embed(card: Card) -> Embed:
    description = card.description
    if description and len(description) > EMBED_DESCRIPTION_MAX:
        description = description[: EMBED_DESCRIPTION_MAX - 3] + "..."
    embed = Embed(
        title=card.title,
        description=description,
        color=card.color,
        timestamp=card.timestamp,
    )
    if card.author_name:
        embed.set_author(name=card.author_name, icon_url=card.author_icon_url)
    if card.footer:
        embed.set_footer(text=card.footer)
    for f in card.fields:
        embed.add_field(name=f.name, value=f.value, inline=f.inline)
    return embed


def to_inbound(message: Message) -> InboundMessage:
    """Map a discord.Message to the platform-free InboundMessage."""
    author = message.author
    avatar = getattr(author, "display_avatar", None)
    return InboundMessage(
        message_id=str(message.id),
        channel_id=str(message.channel.id),
        channel_name=getattr(message.channel, "name", None) or "",
        author_id=str(author.id),
        author_display=getattr(author, "display_name", None) or author.name,
        # Webhook posts count as bot output
        author_bot=bool(author.bot or getattr(message, "webhook_id", None)),
        content=message.content or "",
        created_at=message.created_at,
        author_avatar_url=str(avatar.url) if avatar else None,
        raw=message,
    )
