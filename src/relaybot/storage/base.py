"""Storage interface used by the dispatcher, command handler and supervisor."""

from __future__ import annotations

from typing import Any, Protocol

from relaybot.models import ActivityEntry, BotConfig, Route, RouteCreate, Stats, StatsDelta


class Storage(Protocol):
    """Async storage contract. apply_stats_delta must be atomic."""

    async def list_routes(self) -> list[Route]: ...

    async def get_route(self, route_id: str) -> Route | None: ...

    async def create_route(self, data: RouteCreate) -> Route: ...

    async def update_route(self, route_id: str, **patch: Any) -> Route | None: ...

    async def delete_route(self, route_id: str) -> bool: ...

    async def get_stats(self) -> Stats: ...

    async def apply_stats_delta(self, delta: StatsDelta) -> Stats: ...

    async def append_activity(self, entry: ActivityEntry) -> ActivityEntry: ...

    async def list_activity(self, limit: int = 50) -> list[ActivityEntry]: ...

    async def clear_activity(self) -> None: ...

    async def get_bot_config(self) -> BotConfig: ...

    async def update_bot_config(self, **patch: Any) -> BotConfig: ...
