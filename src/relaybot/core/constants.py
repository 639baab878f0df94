"""Relay constants."""

from __future__ import annotations

from typing import Literal

ActivityType = Literal["RELAY", "CMD", "INFO", "WARN", "ERROR"]
BotStatus = Literal["offline", "connecting", "online"]
RateLimitPosture = Literal["conservative", "moderate", "aggressive"]

RATE_LIMIT_POSTURES: tuple[RateLimitPosture, ...] = ("conservative", "moderate", "aggressive")

# Outbound messages per second for each posture
RATE_LIMIT_PER_SECOND: dict[str, float] = {
    "conservative": 1.0,
    "moderate": 5.0,
    "aggressive": 50.0,
}

DEFAULT_COMMAND_PREFIX = "!relay"
SUBCOMMANDS: tuple[str, ...] = ("status", "add", "remove", "test")
BIDIRECTIONAL_TOKENS = frozenset({"true", "yes", "1", "bidirectional", "both"})

BRAND_COLOR = 0x5865F2
TEST_MESSAGE = "🧪 Test message from relay bot"
DISCORD_API_BASE = "https://discord.com/api/v10"
