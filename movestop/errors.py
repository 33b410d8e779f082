"""Error taxonomy for exchange access and configuration."""

from __future__ import annotations

from typing import Optional


class ExchangeError(Exception):
    """Recoverable failure talking to an exchange.

    The tracker treats every subclass the same way: skip the affected symbol
    (or the whole tick) and try again on the next cycle.
    """

    def __init__(self, message: str, *, exchange: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.exchange = exchange
        self.status_code = status_code

    def __str__(self) -> str:
        base = super().__str__()
        if self.exchange:
            return f"[{self.exchange}] {base}"
        return base


class NetworkError(ExchangeError):
    """Connection failure or request timeout."""


class RateLimitExceeded(ExchangeError):
    """HTTP 429 from the exchange."""


class IpBanned(ExchangeError):
    """HTTP 418, the exchange has banned this IP for a while."""


class ApiError(ExchangeError):
    """Exchange rejected the request."""


class MalformedResponse(ExchangeError):
    """Payload is missing expected fields or cannot be parsed."""


class ConfigError(ValueError):
    """Invalid or missing configuration; fatal at startup."""


__all__ = [
    "ApiError",
    "ConfigError",
    "ExchangeError",
    "IpBanned",
    "MalformedResponse",
    "NetworkError",
    "RateLimitExceeded",
]
