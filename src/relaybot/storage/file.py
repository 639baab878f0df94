"""YAML snapshot storage: MemoryStorage that writes routes, stats and bot config to disk."""

from __future__ import annotations

import asyncio
import dataclasses
import os
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from relaybot.core.errors import ConfigurationError
from relaybot.models import BotConfig, Route, Stats
from relaybot.storage.memory import MemoryStorage


def _dump_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _dump(obj: object) -> dict[str, Any]:
    return {k: _dump_value(v) for k, v in dataclasses.asdict(obj).items()}


def _parse_dt(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class FileStorage(MemoryStorage):
    """Persists state to a YAML file on every change. Activity log stays in memory."""

    def __init__(self, path: str | Path, *, activity_log_max: int = 500) -> None:
        super().__init__(activity_log_max=activity_log_max)
        self._path = Path(path)
        self._write_lock = asyncio.Lock()
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            logger.info("Storage file {} not found; starting empty", self._path)
            return
        try:
            with open(self._path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(
                f"Failed to parse storage file {self._path}",
                code="invalid_storage_file",
                details={"path": str(self._path)},
                original_error=exc,
            ) from exc
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Storage file {self._path} has invalid structure (expected dict)",
                code="invalid_storage_file",
                details={"path": str(self._path)},
            )

        skipped = 0
        for item in data.get("routes") or []:
            if not isinstance(item, dict):
                skipped += 1
                continue
            try:
                route = Route(
                    id=str(item["id"]),
                    name=str(item.get("name", "")),
                    source_channel_id=str(item["source_channel_id"]),
                    target_channel_id=str(item["target_channel_id"]),
                    source_channel_name=str(item.get("source_channel_name", "")),
                    target_channel_name=str(item.get("target_channel_name", "")),
                    bidirectional=bool(item.get("bidirectional", False)),
                    active=bool(item.get("active", True)),
                    created_at=_parse_dt(item.get("created_at")) or datetime.now().astimezone(),
                )
            except Exception as exc:
                logger.warning("Storage: skipping invalid route {}: {}", item.get("id"), exc)
                skipped += 1
                continue
            self._routes[route.id] = route

        stats = data.get("stats")
        if isinstance(stats, dict):
            self._stats = Stats(
                messages_relayed=int(stats.get("messages_relayed", 0)),
                api_calls=int(stats.get("api_calls", 0)),
                # Never restore a live status from disk
                status="offline",
                uptime=str(stats.get("uptime", "0m")),
            )

        bot = data.get("bot_config")
        if isinstance(bot, dict):
            self._bot_config = BotConfig(
                token=bot.get("token"),
                rate_limit=bot.get("rate_limit", "moderate"),
                log_level=str(bot.get("log_level", "info")),
                auto_reconnect=bool(bot.get("auto_reconnect", True)),
                webhook_url=bot.get("webhook_url"),
                last_connected_at=_parse_dt(bot.get("last_connected_at")),
            )
        logger.info(
            "Storage: loaded {} routes from {}{}",
            len(self._routes),
            self._path,
            f", skipped {skipped}" if skipped else "",
        )

    def _snapshot(self) -> dict[str, Any]:
        return {
            "routes": [_dump(r) for r in self._routes.values()],
            "stats": _dump(self._stats),
            "bot_config": _dump(self._bot_config),
        }

    async def _changed(self) -> None:
        async with self._write_lock:
            snapshot = self._snapshot()
            await asyncio.to_thread(self._write, snapshot)

    def _write(self, snapshot: dict[str, Any]) -> None:
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp, "w") as f:
            yaml.safe_dump(snapshot, f, sort_keys=False, allow_unicode=True)
        os.replace(tmp, self._path)
