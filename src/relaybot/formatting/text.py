"""Plain-text helpers."""

from __future__ import annotations


def format_uptime(seconds: float) -> str:
    """Format elapsed seconds as '2d 3h 4m', '3h 4m' or '4m'."""
    total = max(0, int(seconds))
    minutes = total // 60
    hours = minutes // 60
    days = hours // 24
    if days > 0:
        return f"{days}d {hours % 24}h {minutes % 60}m"
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    return f"{minutes}m"


def mask_token(token: str | None) -> str:
    """Mask a token for logs: first and last five characters only."""
    if not token:
        return "(none)"
    if len(token) <= 10:
        return "*" * len(token)
    return f"{token[:5]}...{token[-5:]}"
