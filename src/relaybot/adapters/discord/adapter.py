"""Discord transport: discord.py client, channel resolution, throttled sends."""

from __future__ import annotations

import asyncio
import contextlib

import discord
from cachetools import TTLCache
from discord import Intents, Message
from loguru import logger

from relaybot.adapters.base import Transport
from relaybot.adapters.discord.embeds import ALLOWED_MENTIONS, card_to_embed, to_inbound
from relaybot.adapters.throttle import TokenBucket
from relaybot.core.constants import RATE_LIMIT_PER_SECOND
from relaybot.core.errors import ChannelResolutionError, ConnectionFailedError, DeliveryError, TransportDisconnect
from relaybot.models import Card, ChannelHandle, InboundMessage


def _bucket_size(per_second: float) -> int:
    return max(1, int(per_second))


class DiscordTransport(Transport):
    """Owns one discord.Client per connection. Reconnect policy belongs to the supervisor."""

    def __init__(self, *, rate_limit: str = "moderate", channel_cache_ttl: float = 300) -> None:
        super().__init__()
        self._client: discord.Client | None = None
        self._gateway_task: asyncio.Task | None = None
        self._ready = asyncio.Event()
        self._channel_cache: TTLCache[str, ChannelHandle] = TTLCache(maxsize=512, ttl=channel_cache_ttl)
        rate = RATE_LIMIT_PER_SECOND.get(rate_limit, RATE_LIMIT_PER_SECOND["moderate"])
        self._bucket = TokenBucket(_bucket_size(rate), rate)
        self._send_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return "discord"

    @property
    def user_id(self) -> str | None:
        if self._client and self._client.user:
            return str(self._client.user.id)
        return None

    def set_rate_limit(self, posture: str) -> None:
        rate = RATE_LIMIT_PER_SECOND.get(posture)
        if rate is None:
            logger.warning("Discord: unknown rate limit posture {}; keeping current pacing", posture)
            return
        self._bucket.set_rate(_bucket_size(rate), rate)
        logger.debug("Discord: outbound pacing set to {} ({}/s)", posture, rate)

    def _build_client(self) -> discord.Client:
        intents = Intents.default()
        intents.guilds = True
        intents.messages = True
        intents.message_content = True

        client = discord.Client(intents=intents)

        @client.event
        async def on_ready() -> None:
            logger.info("Discord bot ready: {}", client.user)
            self._ready.set()

        @client.event
        async def on_message(message: Message) -> None:
            if client is not self._client or not self._message_handler:
                return
            try:
                await self._message_handler(to_inbound(message))
            except Exception as exc:
                logger.exception("Message handler failed for {}: {}", message.id, exc)

        @client.event
        async def on_disconnect() -> None:
            logger.debug("Discord: websocket disconnected")

        return client

    async def _run_gateway(self, client: discord.Client) -> None:
        """Run the websocket until it ends. Notifies the supervisor of unexpected ends."""
        drop = TransportDisconnect("gateway connection closed", code="gateway_closed")
        try:
            await client.connect(reconnect=False)
        except discord.ConnectionClosed as exc:
            drop = TransportDisconnect(
                f"gateway closed with code {exc.code}",
                code="gateway_closed",
                details={"close_code": exc.code},
                original_error=exc,
            )
        except (discord.DiscordException, OSError) as exc:
            drop = TransportDisconnect(str(exc) or exc.__class__.__name__, code="gateway_error", original_error=exc)
        if client is not self._client or not self._ready.is_set():
            return
        logger.warning("Discord: {}", drop)
        if self._disconnect_handler:
            await self._disconnect_handler(drop)

    async def open(self, token: str) -> None:
        await self.close()
        client = self._build_client()
        self._ready = asyncio.Event()
        try:
            await client.login(token)
        except discord.LoginFailure as exc:
            await client.close()
            raise ConnectionFailedError(
                "Discord login failed: token invalid or revoked",
                code="token_invalid",
                original_error=exc,
            ) from exc
        except (discord.HTTPException, OSError) as exc:
            await client.close()
            raise ConnectionFailedError(
                f"Discord login failed: {exc}",
                code="login_failed",
                original_error=exc,
            ) from exc

        self._client = client
        self._gateway_task = asyncio.create_task(self._run_gateway(client))
        ready_task = asyncio.create_task(self._ready.wait())
        try:
            await asyncio.wait({ready_task, self._gateway_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            ready_task.cancel()
        if not self._ready.is_set():
            await self.close()
            raise ConnectionFailedError("Discord gateway closed before ready", code="handshake_failed")

    async def close(self) -> None:
        client, task = self._client, self._gateway_task
        self._client = None
        self._gateway_task = None
        self._ready.clear()
        self._channel_cache.clear()
        if client and not client.is_closed():
            await client.close()
        if task and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def resolve_channel(self, channel_id: str) -> ChannelHandle:
        cached = self._channel_cache.get(channel_id)
        if cached:
            return cached
        if not self._client:
            raise ChannelResolutionError(channel_id, "Not connected to Discord", code="not_connected")
        try:
            numeric_id = int(channel_id)
        except ValueError:
            raise ChannelResolutionError(channel_id, f"Invalid channel id {channel_id!r}", code="invalid_channel_id")

        channel = self._client.get_channel(numeric_id)
        if channel is None:
            try:
                channel = await self._client.fetch_channel(numeric_id)
            except discord.HTTPException as exc:
                raise ChannelResolutionError(channel_id, original_error=exc) from exc
        if not isinstance(channel, discord.abc.Messageable):
            raise ChannelResolutionError(
                channel_id,
                f"Channel {channel_id} is not a text channel",
                code="not_text_channel",
            )
        handle = ChannelHandle(id=str(channel.id), name=getattr(channel, "name", None) or str(channel.id), raw=channel)
        self._channel_cache[channel_id] = handle
        return handle

    async def pace(self) -> None:
        async with self._send_lock:
            wait = self._bucket.acquire()
            if wait > 0:
                await asyncio.sleep(wait)
            self._bucket.use_token()

    async def send(self, channel: ChannelHandle, *, content: str | None = None, card: Card | None = None) -> str:
        target = channel.raw
        if target is None:
            raise DeliveryError(channel.id, f"Channel {channel.id} has no Discord handle", code="no_handle")
        try:
            sent = await target.send(
                content=content,
                embed=card_to_embed(card) if card else None,
                allowed_mentions=ALLOWED_MENTIONS,
            )
        except discord.HTTPException as exc:
            self._channel_cache.pop(channel.id, None)
            raise DeliveryError(channel.id, f"Send rejected: {exc}", original_error=exc) from exc
        return str(sent.id)

    async def reply(self, message: InboundMessage, *, content: str | None = None, card: Card | None = None) -> None:
        original = message.raw
        if original is None:
            raise DeliveryError(message.channel_id, "Inbound message has no Discord handle", code="no_handle")
        try:
            await original.reply(
                content=content,
                embed=card_to_embed(card) if card else None,
                mention_author=False,
                allowed_mentions=ALLOWED_MENTIONS,
            )
        except discord.HTTPException as exc:
            raise DeliveryError(message.channel_id, f"Reply rejected: {exc}", original_error=exc) from exc
