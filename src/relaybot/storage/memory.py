"""In-memory storage. Single event loop; stats updates serialized by a lock."""

from __future__ import annotations

import asyncio
import dataclasses
from collections import deque
from typing import Any

from loguru import logger

from relaybot.core.constants import RATE_LIMIT_POSTURES
from relaybot.core.errors import ConfigurationError
from relaybot.models import (
    BOT_CONFIG_FIELDS,
    ROUTE_MUTABLE_FIELDS,
    ActivityEntry,
    BotConfig,
    Route,
    RouteCreate,
    Stats,
    StatsDelta,
)


class MemoryStorage:
    """Routes, stats, activity and bot config held in process memory."""

    def __init__(self, *, activity_log_max: int = 500) -> None:
        self._routes: dict[str, Route] = {}
        self._stats = Stats()
        self._stats_lock = asyncio.Lock()
        self._activity: deque[ActivityEntry] = deque(maxlen=max(1, activity_log_max))
        self._bot_config = BotConfig()

    async def list_routes(self) -> list[Route]:
        """All routes, newest first. Copies, so callers cannot mutate stored state."""
        routes = sorted(self._routes.values(), key=lambda r: r.created_at, reverse=True)
        return [dataclasses.replace(r) for r in routes]

    async def get_route(self, route_id: str) -> Route | None:
        route = self._routes.get(route_id)
        return dataclasses.replace(route) if route else None

    async def create_route(self, data: RouteCreate) -> Route:
        route = Route.from_create(data)
        self._routes[route.id] = route
        await self._changed()
        logger.debug("Storage: created route {} ({})", route.id, route.name)
        return dataclasses.replace(route)

    async def update_route(self, route_id: str, **patch: Any) -> Route | None:
        existing = self._routes.get(route_id)
        if existing is None:
            return None
        unknown = set(patch) - ROUTE_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown route fields: {', '.join(sorted(unknown))}")
        # Route.__post_init__ re-validates source != target
        updated = dataclasses.replace(existing, **patch)
        self._routes[route_id] = updated
        await self._changed()
        return dataclasses.replace(updated)

    async def delete_route(self, route_id: str) -> bool:
        if self._routes.pop(route_id, None) is None:
            return False
        await self._changed()
        return True

    async def get_stats(self) -> Stats:
        return dataclasses.replace(self._stats)

    async def apply_stats_delta(self, delta: StatsDelta) -> Stats:
        async with self._stats_lock:
            self._stats = delta.apply(self._stats)
            await self._changed()
            return dataclasses.replace(self._stats)

    async def append_activity(self, entry: ActivityEntry) -> ActivityEntry:
        self._activity.append(entry)
        return entry

    async def list_activity(self, limit: int = 50) -> list[ActivityEntry]:
        """Newest first."""
        if limit <= 0:
            return []
        return list(reversed(self._activity))[:limit]

    async def clear_activity(self) -> None:
        self._activity.clear()

    async def get_bot_config(self) -> BotConfig:
        return dataclasses.replace(self._bot_config)

    async def update_bot_config(self, **patch: Any) -> BotConfig:
        unknown = set(patch) - BOT_CONFIG_FIELDS
        if unknown:
            raise ValueError(f"Unknown bot config fields: {', '.join(sorted(unknown))}")
        posture = patch.get("rate_limit")
        if posture is not None and posture not in RATE_LIMIT_POSTURES:
            raise ConfigurationError(
                f"Invalid rate_limit: {posture}",
                code="invalid_rate_limit",
                details={"value": posture, "allowed": list(RATE_LIMIT_POSTURES)},
            )
        self._bot_config = dataclasses.replace(self._bot_config, **patch)
        await self._changed()
        return dataclasses.replace(self._bot_config)

    async def _changed(self) -> None:
        """Hook for persistent subclasses."""
