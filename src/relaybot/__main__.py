"""Relay bot entrypoint. Loads config, builds the service, connects and runs until stopped."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any

from loguru import logger

from relaybot import __version__
from relaybot.adapters.discord import DiscordTransport
from relaybot.config import Config, load_config_with_env
from relaybot.core.errors import ConfigurationError, PreflightError, QuotaExhaustedError, RelayError
from relaybot.service import RelayService, build_storage

# Third-party libraries to intercept and route through loguru
_INTERCEPTED_LIBRARIES = ["discord", "discord.client", "discord.gateway", "discord.http", "httpx"]

UPTIME_REFRESH_SECONDS = 60


def _intercept_logging(level: str) -> None:
    """Route standard-library logging from discord.py and httpx into loguru."""

    class InterceptHandler(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            try:
                log_level = logger.level(record.levelname).name
            except ValueError:
                log_level = str(record.levelno)
            msg = record.getMessage().replace("{", "{{").replace("}", "}}")
            logger.patch(
                lambda r: r.update(
                    name=record.name,
                    function=record.funcName,
                    line=record.lineno,
                ),
            ).opt(exception=record.exc_info).log(log_level, msg)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for lib in _INTERCEPTED_LIBRARIES:
        lib_logger = logging.getLogger(lib)
        lib_logger.handlers = [InterceptHandler()]
        lib_logger.propagate = False
        lib_logger.setLevel(level)


def _safe_message_filter(record: Any) -> bool:
    """Escape braces/angles in log messages to prevent format/tag errors."""
    if isinstance(record.get("message"), str):
        msg = record["message"]
        msg = msg.replace("{", "{{").replace("}", "}}").replace("<", "\\<")
        record["message"] = msg
    return True


# Persisted bot-config levels use lowercase names and "warn"
_LEVEL_ALIASES = {"WARN": "WARNING"}
_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _resolve_level(verbose: bool, persisted: str | None) -> str:
    if verbose:
        return "DEBUG"
    for candidate in (os.environ.get("LOG_LEVEL"), persisted):
        name = (candidate or "").upper()
        name = _LEVEL_ALIASES.get(name, name)
        if name in _LEVELS:
            return name
    return "INFO"


def setup_logging(verbose: bool = False, log_level: str | None = None) -> None:
    """Configure loguru.

    Level precedence: verbose=True (DEBUG), then the LOG_LEVEL env var, then the
    persisted bot-config log_level, otherwise INFO.
    """
    level = _resolve_level(verbose, log_level)

    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format=("<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan> | {message}"),
        filter=_safe_message_filter,
    )
    _intercept_logging(level)


def reload_config(config_path: Path, config: Config | None = None) -> Config:
    """Load config from path into config (or a new Config)."""
    data = load_config_with_env(config_path)
    config = config or Config()
    config.reload(data)
    return config


def main() -> None:
    """Main entrypoint."""
    parser = argparse.ArgumentParser(description="relaybot — Discord channel relay with loop and quota guards")
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    args = parser.parse_args()

    setup_logging(args.verbose)

    if not args.config.exists():
        logger.error("Config file not found: {}", args.config)
        sys.exit(1)

    try:
        config = reload_config(args.config)
    except ConfigurationError as exc:
        logger.error("Invalid config {}: {}", args.config, exc)
        sys.exit(1)
    logger.info("Config loaded from {}", args.config)

    try:
        asyncio.run(_run(args.config, config, args.verbose))
    except ConfigurationError as exc:
        logger.error("Startup failed: {}", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


async def _refresh_uptime(service: RelayService) -> None:
    while True:
        await asyncio.sleep(UPTIME_REFRESH_SECONDS)
        if service.get_connection_status().connected:
            await service.update_uptime()


def _spawn(tasks: set[asyncio.Task], coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
    """Start a background task and hold a reference to it until it finishes."""
    task = asyncio.create_task(coro)
    tasks.add(task)
    task.add_done_callback(tasks.discard)
    task.add_done_callback(_log_task_failure)
    return task


def _log_task_failure(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.opt(exception=task.exception()).error("Background task {} failed", task.get_name())


async def handle_sighup(config_path: Path, config: Config, service: RelayService) -> list[str]:
    """Reload the config file and push changes into the running service."""
    try:
        reload_config(config_path, config)
    except ConfigurationError as exc:
        logger.error("Config reload failed; keeping previous config: {}", exc)
        return []
    changed = await service.reload_config(config)
    logger.info("Config reloaded (SIGHUP); changed: {}", ", ".join(changed) or "nothing")
    return changed


async def _run(config_path: Path, config: Config, verbose: bool = False) -> None:
    """Async run loop. Connect and wait for SIGINT/SIGTERM; SIGHUP reloads config."""
    storage = build_storage(config)
    transport = DiscordTransport()
    service = RelayService(
        config,
        storage,
        transport,
        on_log_level=lambda level: setup_logging(verbose, level),
    )

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    background: set[asyncio.Task] = set()

    loop.add_signal_handler(
        signal.SIGHUP,
        lambda: _spawn(background, handle_sighup(config_path, config, service)),
    )
    loop.add_signal_handler(signal.SIGINT, stop.set)
    loop.add_signal_handler(signal.SIGTERM, stop.set)

    try:
        await service.start()
    except QuotaExhaustedError as exc:
        logger.error("Not connecting: {} (retry after {}s)", exc, exc.retry_after)
    except PreflightError as exc:
        logger.error("Not connecting: {}", exc)
    except ConfigurationError:
        raise
    except RelayError as exc:
        logger.error("Initial connect failed: {}", exc)

    uptime_task = asyncio.create_task(_refresh_uptime(service))
    logger.info("Relay bot running — status {}", service.get_connection_status().state)
    try:
        await stop.wait()
    finally:
        logger.info("Relay bot shutting down")
        uptime_task.cancel()
        await service.stop()


if __name__ == "__main__":
    main()
