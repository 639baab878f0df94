"""Relay core: route table, loop guard, dispatcher, commands, quota guard, supervisor."""

from relaybot.gateway.activity import ActivityLog
from relaybot.gateway.commands import CommandHandler, ParsedCommand, parse_command
from relaybot.gateway.dispatcher import RelayDispatcher
from relaybot.gateway.notifier import WebhookNotifier
from relaybot.gateway.quota import SessionQuotaGuard
from relaybot.gateway.routes import RouteTable, resolve_destination
from relaybot.gateway.supervisor import ConnectionSupervisor

__all__ = [
    "ActivityLog",
    "CommandHandler",
    "ConnectionSupervisor",
    "ParsedCommand",
    "RelayDispatcher",
    "RouteTable",
    "SessionQuotaGuard",
    "WebhookNotifier",
    "parse_command",
    "resolve_destination",
]
