"""Trailing stop-loss and profit-withdrawal decisions for a single position."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, Optional, Tuple

from .errors import ConfigError
from .models import REASON_STOPLOSS, REASON_WITHDRAW, LiquidationIntent, Position, Record
from .utils import round_to, tenth_bucket


@dataclass(frozen=True)
class StopLossConfig:
    stoploss: float
    start_threshold: float
    withdraw_ratio: float
    min_value: float = 10.0
    markdown: float = 0.05

    def __post_init__(self):
        if self.stoploss >= 0:
            raise ConfigError(f"stoploss must be negative, got {self.stoploss}")
        if self.start_threshold <= 0:
            raise ConfigError(f"start_threshold must be positive, got {self.start_threshold}")
        if not 0 < self.withdraw_ratio <= 1:
            raise ConfigError(f"withdraw_ratio must be in (0, 1], got {self.withdraw_ratio}")
        if self.min_value < 0:
            raise ConfigError(f"min_value must not be negative, got {self.min_value}")
        if not 0 <= self.markdown < 1:
            raise ConfigError(f"markdown must be in [0, 1), got {self.markdown}")

    @classmethod
    def from_dict(cls, raw: Dict[str, object]) -> "StopLossConfig":
        try:
            return cls(
                stoploss=float(raw["stoploss"]),
                start_threshold=float(raw["start_threshold"]),
                withdraw_ratio=float(raw["withdraw_ratio"]),
                min_value=float(raw.get("min_value", 10.0)),
                markdown=float(raw.get("markdown", 0.05)),
            )
        except KeyError as exc:
            raise ConfigError(f"missing stop-loss setting {exc.args[0]!r}") from exc
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid stop-loss setting: {exc}") from exc


def calc_withdraw_ratio(profit_ratio: float, config: StopLossConfig) -> float:
    """Fraction of the peak gain the position must keep before it is sold.

    Below ``start_threshold`` this is the flat ``withdraw_ratio``. Above it the
    ratio steps per 0.1 of profit: ``(b(x) - b(t) + 1) / b(x)`` with
    ``b(x) = floor(10 * x)``.
    """
    if profit_ratio < config.start_threshold:
        return config.withdraw_ratio
    bucket = tenth_bucket(profit_ratio)
    if bucket == 0:
        return config.withdraw_ratio
    return (bucket - tenth_bucket(config.start_threshold) + 1) / bucket


def _liquidate(position: Position, bid: float, reason: str, config: StopLossConfig,
               price_precision: int) -> LiquidationIntent:
    record = Record(
        symbol=position.symbol,
        buy_price=position.price,
        sell_price=bid,
        amount=position.amount,
        profit=round_to((bid - position.price) * position.amount, 2),
        reason=reason,
    )
    return LiquidationIntent(
        symbol=position.symbol,
        price=round_to(bid * (1 - config.markdown), price_precision),
        amount=position.amount,
        reason=reason,
        record=record,
    )


def evaluate(position: Position, bid: float, config: StopLossConfig,
             price_precision: int = 8) -> Tuple[Position, Optional[LiquidationIntent]]:
    """Run one tick of the stop engine.

    Returns the updated position and at most one liquidation intent. When an
    intent is emitted the returned position is flat.
    """
    if position.price <= 0 or position.is_dust(config.min_value):
        return position, None

    diff_ratio = (bid - position.price) / position.price
    high_ratio = (position.high - position.price) / position.price
    withdraw_ratio = calc_withdraw_ratio(diff_ratio, config)

    logging.info(
        "%s amt=%.8f p=%.8f avg=%.8f hi=%.8f pr=%.4f sl=%.8f wr=%.4f wp=%.8f",
        position.symbol,
        position.amount,
        bid,
        position.price,
        position.high,
        round_to(diff_ratio, 4),
        position.price * (1 + config.stoploss),
        withdraw_ratio,
        position.price * (1 + withdraw_ratio * high_ratio),
    )

    reason = None
    if diff_ratio <= config.stoploss:
        reason = REASON_STOPLOSS
    elif high_ratio >= config.start_threshold and diff_ratio <= high_ratio * withdraw_ratio:
        reason = REASON_WITHDRAW

    if reason is None:
        return replace(position, high=max(position.high, bid)), None

    intent = _liquidate(position, bid, reason, config, price_precision)
    logging.info("%s %s triggered, sell %.8f at %s (profit %.2f)", position.symbol, reason.lower(),
                 intent.amount, intent.price, intent.record.profit)
    return Position.flat(position.symbol), intent


__all__ = ["StopLossConfig", "calc_withdraw_ratio", "evaluate"]
