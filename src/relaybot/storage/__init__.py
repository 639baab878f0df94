"""Storage for routes, stats, activity log and bot config."""

from relaybot.storage.base import Storage
from relaybot.storage.file import FileStorage
from relaybot.storage.memory import MemoryStorage

__all__ = ["FileStorage", "MemoryStorage", "Storage"]
