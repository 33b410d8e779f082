"""Trailing stop-loss tracker for spot exchange holdings."""

__all__ = [
    "binance_client",
    "config",
    "errors",
    "exchange",
    "huobi_client",
    "ledger",
    "models",
    "reconstructor",
    "report",
    "stoploss",
    "tracker",
    "utils",
]
