"""Exchange capability interface consumed by the position tracker.

Adapters translate their wire payloads into the canonical types in
:mod:`movestop.models` and raise :class:`movestop.errors.ExchangeError`
subclasses for every recoverable failure. The core never branches on
exchange identity.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from .errors import MalformedResponse
from .models import SIDE_BUY, SIDE_SELL, Balance, Fill, SymbolInfo, Ticker


def normalize_side(raw: object) -> str:
    """Map exchange side spellings (``buy``, ``SELL``, ``buy-limit``...) to BUY/SELL."""

    text = str(raw or "").strip().lower()
    if text.startswith("buy"):
        return SIDE_BUY
    if text.startswith("sell"):
        return SIDE_SELL
    raise MalformedResponse(f"Unknown order side {raw!r}")


class ExchangeClient(ABC):
    name = "exchange"

    @abstractmethod
    def get_symbols(self) -> List[SymbolInfo]:
        ...

    @abstractmethod
    def get_all_balances(self) -> List[Balance]:
        ...

    @abstractmethod
    def get_ticker(self, symbol: str) -> Ticker:
        ...

    @abstractmethod
    def get_history_orders(self, symbol: str) -> List[Fill]:
        """Return filled history orders; ordering is not guaranteed."""

    @abstractmethod
    def create_order(self, symbol: str, price: float, amount: float, side: str, order_type: str) -> str:
        """Place an order and return the exchange order id."""

    @abstractmethod
    def cancel_all(self, symbol: str) -> bool:
        ...


__all__ = ["ExchangeClient", "normalize_side"]
