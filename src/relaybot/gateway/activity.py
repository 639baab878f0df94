"""Activity log writer: storage entry plus matching loguru record."""

from __future__ import annotations

from loguru import logger

from relaybot.core.constants import ActivityType
from relaybot.models import ActivityEntry
from relaybot.storage import Storage

_LOG_LEVELS: dict[str, str] = {
    "RELAY": "INFO",
    "CMD": "INFO",
    "INFO": "INFO",
    "WARN": "WARNING",
    "ERROR": "ERROR",
}


class ActivityLog:
    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    async def record(
        self,
        type: ActivityType,
        message: str,
        *,
        channel_id: str | None = None,
        user_id: str | None = None,
    ) -> ActivityEntry:
        logger.log(_LOG_LEVELS[type], "Activity [{}] {}", type, message)
        entry = ActivityEntry(type=type, message=message, channel_id=channel_id, user_id=user_id)
        return await self._storage.append_activity(entry)
