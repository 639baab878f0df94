"""Relay domain exceptions."""

from __future__ import annotations


class RelayError(Exception):
    """Base for relay domain errors."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, object] | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.original_error = original_error


class ConfigurationError(RelayError):
    """Config validation or load failure, or no token resolvable."""


class RouteValidationError(RelayError):
    """Route data violates an invariant (e.g. source == target)."""


class QuotaExhaustedError(RelayError):
    """Session-start allowance depleted. Do not connect before retry_after elapses."""

    def __init__(self, message: str, *, retry_after: float, **kwargs) -> None:
        super().__init__(message, code=kwargs.pop("code", "quota_exhausted"), **kwargs)
        self.retry_after = retry_after


class PreflightError(RelayError):
    """Session quota could not be confirmed (network, auth, bad payload)."""


class ConnectionFailedError(RelayError):
    """Login or gateway handshake failed."""


class ChannelResolutionError(RelayError):
    """Channel not found or not accessible."""

    def __init__(self, channel_id: str, message: str | None = None, **kwargs) -> None:
        super().__init__(
            message or f"Channel {channel_id} not found or not accessible",
            code=kwargs.pop("code", "channel_not_found"),
            **kwargs,
        )
        self.channel_id = channel_id


class DeliveryError(RelayError):
    """Platform rejected a send."""

    def __init__(self, channel_id: str, message: str, **kwargs) -> None:
        super().__init__(message, code=kwargs.pop("code", "delivery_failed"), **kwargs)
        self.channel_id = channel_id


class TransportDisconnect(RelayError):
    """Unexpected transport-level disconnect."""
