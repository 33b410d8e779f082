"""Rebuild a holding's size and average entry price from fill history."""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Iterable, Tuple

from .models import SIDE_BUY, SIDE_SELL, Balance, Fill, Position
from .utils import amounts_equal


HistoryFetcher = Callable[[], Iterable[Fill]]


def walk_fills(fills: Iterable[Fill], target: float) -> Tuple[float, float]:
    """Accumulate ``(amount, avg_price)`` over fills, newest first.

    The walk starts flat and stops as soon as the running amount matches
    ``target``. A fill that would divide by a zero running amount ends the
    walk without being applied. The returned amount may be negative; callers
    collapse that to flat.
    """
    amount = 0.0
    avg_price = 0.0
    for fill in sorted(fills, key=lambda f: f.timestamp, reverse=True):
        if fill.side == SIDE_BUY:
            denom = amount + fill.filled_amount
            if amounts_equal(denom, 0.0):
                break
            avg_price = (amount * avg_price + fill.filled_amount * fill.price) / denom
            amount += fill.order_amount
        elif fill.side == SIDE_SELL:
            denom = amount - fill.filled_amount
            if amounts_equal(denom, 0.0):
                break
            avg_price = (amount * avg_price - fill.filled_amount * fill.price) / denom
            amount -= fill.order_amount
        else:
            logging.warning("Skipping fill with unknown side %r for %s", fill.side, fill.symbol)
            continue
        if amounts_equal(amount, target):
            break
    return amount, avg_price


def reconstruct(previous: Position, balance: Balance, history: HistoryFetcher, bid: float,
                min_value: float) -> Position:
    """Return the refreshed position for one symbol.

    ``history`` is only called when the balance moved and is worth more than
    ``min_value`` at ``bid``; exchange errors it raises propagate.
    """
    free = balance.free

    # --- balance unchanged since last tick ---
    if amounts_equal(free, previous.amount):
        if previous.is_dust(min_value):
            return previous
        return replace(previous, high=max(bid, previous.high))

    # --- whole holding is dust ---
    if free * bid < min_value:
        return Position(symbol=previous.symbol, amount=free, price=0.0, high=0.0)

    amount, avg_price = walk_fills(history(), free)
    if not amounts_equal(amount, free):
        logging.debug("%s history walk ended at %.8f, balance is %.8f", previous.symbol, amount, free)
    if amount <= 0 or amount * avg_price < min_value:
        amount, avg_price = 0.0, 0.0
    return Position(symbol=previous.symbol, amount=amount, price=avg_price, high=max(bid, avg_price))


__all__ = ["HistoryFetcher", "reconstruct", "walk_fills"]
