"""Route table and loop guard."""

from __future__ import annotations

from relaybot.models import Route
from relaybot.storage import Storage


def resolve_destination(route: Route, channel_id: str) -> str | None:
    """Destination for a message seen on channel_id, or None when the route does not apply.

    Forward: arrived on source, goes to target. Reverse (bidirectional only): arrived on
    target, goes to source. Never returns the channel the message arrived on.
    """
    if channel_id == route.source_channel_id:
        return route.target_channel_id
    if route.bidirectional and channel_id == route.target_channel_id:
        return route.source_channel_id
    return None


class RouteTable:
    """Reads routes from storage on every call; nothing is cached between dispatches."""

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    async def active_routes(self) -> list[Route]:
        return [r for r in await self._storage.list_routes() if r.active]

    async def matches(self, channel_id: str) -> list[tuple[Route, str]]:
        """(route, destination) for every active route that applies to channel_id."""
        result: list[tuple[Route, str]] = []
        for route in await self.active_routes():
            destination = resolve_destination(route, channel_id)
            if destination is not None and destination != channel_id:
                result.append((route, destination))
        return result
