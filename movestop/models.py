"""Canonical market types shared by every exchange adapter."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

SIDE_BUY = "BUY"
SIDE_SELL = "SELL"

ORDER_TYPE_LIMIT = "LIMIT"
ORDER_TYPE_MARKET = "MARKET"

REASON_STOPLOSS = "STOPLOSS"
REASON_WITHDRAW = "WITHDRAW"


@dataclass(frozen=True)
class SymbolInfo:
    base: str
    quote: str
    symbol: str
    price_precision: int = 8
    amount_precision: int = 8
    min_amount: float = 0.0
    min_value: float = 10.0


@dataclass(frozen=True)
class Balance:
    asset: str
    free: float
    locked: float = 0.0


@dataclass(frozen=True)
class Fill:
    """A completed (fully or partially filled) history order."""

    symbol: str
    side: str
    order_amount: float
    filled_amount: float
    price: float
    timestamp: int


@dataclass(frozen=True)
class BookLevel:
    price: float
    amount: float = 0.0


@dataclass(frozen=True)
class Ticker:
    symbol: str
    bid: BookLevel
    ask: BookLevel
    timestamp: int = 0


@dataclass(frozen=True)
class Position:
    symbol: str
    amount: float = 0.0
    price: float = 0.0
    high: float = 0.0

    @property
    def notional(self) -> float:
        return self.amount * self.price

    def is_dust(self, min_value: float) -> bool:
        return self.notional < min_value

    @classmethod
    def flat(cls, symbol: str) -> "Position":
        return cls(symbol=symbol)


@dataclass(frozen=True)
class Record:
    """Closed-trade ledger entry, booked when a liquidation is decided."""

    symbol: str
    buy_price: float
    sell_price: float
    amount: float
    profit: float
    reason: str = ""
    ts: Optional[str] = None


@dataclass(frozen=True)
class LiquidationIntent:
    symbol: str
    price: float
    amount: float
    reason: str
    record: Record
    side: str = SIDE_SELL
    order_type: str = ORDER_TYPE_LIMIT
