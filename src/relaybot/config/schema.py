"""Config schema and accessor."""

from __future__ import annotations

import os
from typing import Any

from loguru import logger

from relaybot.core.constants import DEFAULT_COMMAND_PREFIX, DISCORD_API_BASE
from relaybot.core.errors import ConfigurationError

# Env keys that override config (loaded once per reload)
_ENV_OVERRIDE_KEYS = (
    "DISCORD_BOT_TOKEN",
    "RELAY_COMMAND_PREFIX",
    "RELAY_STORAGE_PATH",
)

_NUMERIC_KEYS = (
    "activity_log_max",
    "send_timeout_seconds",
    "preflight_timeout_seconds",
    "connect_timeout_seconds",
    "reconnect_max_attempts",
    "reconnect_backoff_min",
    "reconnect_backoff_max",
)


def _load_env_overrides() -> dict[str, str]:
    return {k: os.environ.get(k, "") for k in _ENV_OVERRIDE_KEYS}


class Config:
    """Config accessor with attribute-style access for known keys."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self._data = data or {}
        self._env: dict[str, str] = _load_env_overrides()

    def reload(self, data: dict[str, Any], *, validate: bool = True) -> None:
        """Replace config data (e.g. on SIGHUP reload). Invalid data leaves the old values in place."""
        previous = (self._data, self._env)
        self._data = data or {}
        self._env = _load_env_overrides()
        if validate:
            try:
                self._validate()
            except ConfigurationError:
                self._data, self._env = previous
                raise
        logger.debug("Config reloaded: prefix={} storage={}", self.command_prefix, self.storage_path or "memory")

    def _validate(self) -> None:
        """Validate config structure; raise ConfigurationError on failure."""
        for key in _NUMERIC_KEYS:
            val = self._data.get(key)
            if val is None:
                continue
            if isinstance(val, bool) or not isinstance(val, int | float) or val < 0:
                raise ConfigurationError(
                    f"{key} must be a non-negative number",
                    code="invalid_number",
                    details={"key": key, "value": val},
                )
        prefix = self._data.get("command_prefix")
        if prefix is not None and (not isinstance(prefix, str) or not prefix.strip() or " " in prefix.strip()):
            raise ConfigurationError(
                "command_prefix must be a single non-empty token",
                code="invalid_command_prefix",
                details={"value": prefix},
            )
        if self.reconnect_backoff_min > self.reconnect_backoff_max:
            raise ConfigurationError(
                "reconnect_backoff_min must not exceed reconnect_backoff_max",
                code="invalid_backoff",
                details={"min": self.reconnect_backoff_min, "max": self.reconnect_backoff_max},
            )

    @property
    def raw(self) -> dict[str, Any]:
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Get value by dot-separated path."""
        parts = key.split(".")
        obj: Any = self._data
        for part in parts:
            if isinstance(obj, dict) and part in obj:
                obj = obj[part]
            else:
                return default
        return obj

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __contains__(self, key: str) -> bool:
        return key in self._data

    @property
    def token_override(self) -> str | None:
        """Deployment-level token. Wins over the persisted token."""
        token = self._env.get("DISCORD_BOT_TOKEN", "").strip()
        return token or None

    @property
    def command_prefix(self) -> str:
        env_val = self._env.get("RELAY_COMMAND_PREFIX", "").strip()
        if env_val:
            return env_val
        return str(self._data.get("command_prefix", DEFAULT_COMMAND_PREFIX)).strip()

    @property
    def storage_path(self) -> str | None:
        env_val = self._env.get("RELAY_STORAGE_PATH", "").strip()
        if env_val:
            return env_val
        val = self._data.get("storage_path")
        if val and isinstance(val, str) and val.strip():
            return val.strip()
        return None

    @property
    def activity_log_max(self) -> int:
        return int(self._data.get("activity_log_max", 500))

    @property
    def send_timeout_seconds(self) -> float:
        return float(self._data.get("send_timeout_seconds", 10))

    @property
    def preflight_timeout_seconds(self) -> float:
        return float(self._data.get("preflight_timeout_seconds", 10))

    @property
    def connect_timeout_seconds(self) -> float:
        return float(self._data.get("connect_timeout_seconds", 30))

    @property
    def reconnect_max_attempts(self) -> int:
        return int(self._data.get("reconnect_max_attempts", 5))

    @property
    def reconnect_backoff_min(self) -> float:
        return float(self._data.get("reconnect_backoff_min", 2))

    @property
    def reconnect_backoff_max(self) -> float:
        return float(self._data.get("reconnect_backoff_max", 300))

    @property
    def discord_api_base(self) -> str:
        val = self._data.get("discord_api_base")
        if val and isinstance(val, str) and val.strip():
            return val.strip().rstrip("/")
        return DISCORD_API_BASE
