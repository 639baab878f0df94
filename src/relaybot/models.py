"""Relay data model: routes, stats, activity log, bot config, inbound messages."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from relaybot.core.constants import ActivityType, BotStatus, RateLimitPosture
from relaybot.core.errors import RouteValidationError


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return uuid.uuid4().hex


def validate_channels(source_channel_id: str, target_channel_id: str) -> None:
    """Raise RouteValidationError unless source and target are distinct non-empty ids."""
    if not source_channel_id or not target_channel_id:
        raise RouteValidationError(
            "Route requires both source and target channel ids",
            code="missing_channel_id",
            details={"source": source_channel_id, "target": target_channel_id},
        )
    if source_channel_id == target_channel_id:
        raise RouteValidationError(
            "Route source and target must differ",
            code="same_channel",
            details={"channel_id": source_channel_id},
        )


@dataclass
class RouteCreate:
    """Fields accepted when creating a route."""

    source_channel_id: str
    target_channel_id: str
    name: str = ""
    source_channel_name: str = ""
    target_channel_name: str = ""
    bidirectional: bool = False
    active: bool = True

    def __post_init__(self) -> None:
        validate_channels(self.source_channel_id, self.target_channel_id)


@dataclass
class Route:
    """Configured relay rule between two channels."""

    id: str
    name: str
    source_channel_id: str
    target_channel_id: str
    source_channel_name: str = ""
    target_channel_name: str = ""
    bidirectional: bool = False
    active: bool = True
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        validate_channels(self.source_channel_id, self.target_channel_id)

    @classmethod
    def from_create(cls, data: RouteCreate) -> Route:
        return cls(
            id=new_id(),
            name=data.name or f"{data.source_channel_id} → {data.target_channel_id}",
            source_channel_id=data.source_channel_id,
            target_channel_id=data.target_channel_id,
            source_channel_name=data.source_channel_name,
            target_channel_name=data.target_channel_name,
            bidirectional=data.bidirectional,
            active=data.active,
        )


# Fields a route update may change
ROUTE_MUTABLE_FIELDS = frozenset(
    {
        "name",
        "source_channel_id",
        "target_channel_id",
        "source_channel_name",
        "target_channel_name",
        "bidirectional",
        "active",
    }
)


@dataclass
class Stats:
    """Relay and command counters plus connection status."""

    messages_relayed: int = 0
    api_calls: int = 0
    status: BotStatus = "offline"
    uptime: str = "0m"
    last_updated: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class StatsDelta:
    """Atomic stats change: counter increments plus optional absolute fields."""

    messages_relayed: int = 0
    api_calls: int = 0
    status: BotStatus | None = None
    uptime: str | None = None
    reset: bool = False

    def __post_init__(self) -> None:
        if self.messages_relayed < 0 or self.api_calls < 0:
            raise ValueError("Stats counters only move forward; use reset=True to zero them")

    def apply(self, stats: Stats) -> Stats:
        """Return a new Stats with this delta applied."""
        relayed = 0 if self.reset else stats.messages_relayed
        calls = 0 if self.reset else stats.api_calls
        return Stats(
            messages_relayed=relayed + self.messages_relayed,
            api_calls=calls + self.api_calls,
            status=self.status or stats.status,
            uptime=self.uptime if self.uptime is not None else stats.uptime,
            last_updated=utcnow(),
        )


@dataclass
class ActivityEntry:
    """Append-only activity log record."""

    type: ActivityType
    message: str
    channel_id: str | None = None
    user_id: str | None = None
    timestamp: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)


@dataclass
class BotConfig:
    """Persisted bot settings."""

    token: str | None = None
    rate_limit: RateLimitPosture = "moderate"
    log_level: str = "info"
    auto_reconnect: bool = True
    webhook_url: str | None = None
    last_connected_at: datetime | None = None


BOT_CONFIG_FIELDS = frozenset(
    {"token", "rate_limit", "log_level", "auto_reconnect", "webhook_url", "last_connected_at"}
)


@dataclass
class ChannelHandle:
    """Resolved channel. raw holds the transport's own channel object."""

    id: str
    name: str
    raw: Any = None


@dataclass
class InboundMessage:
    """Inbound chat message, independent of the platform client."""

    message_id: str
    channel_id: str
    channel_name: str
    author_id: str
    author_display: str
    author_bot: bool
    content: str
    created_at: datetime = field(default_factory=utcnow)
    author_avatar_url: str | None = None
    raw: Any = None


@dataclass
class CardField:
    name: str
    value: str
    inline: bool = True


@dataclass
class Card:
    """Rich message, converted to the platform's embed type by the transport."""

    description: str | None = None
    title: str | None = None
    author_name: str | None = None
    author_icon_url: str | None = None
    footer: str | None = None
    timestamp: datetime | None = None
    color: int | None = None
    fields: list[CardField] = field(default_factory=list)


@dataclass
class ConnectionStatus:
    connected: bool
    state: BotStatus
    uptime: str
