"""Per-tick orchestration: balances -> reconstruct -> stop engine -> orders."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from threading import Lock
from typing import Dict, List, Optional

from .config import TrackerConfig
from .errors import ExchangeError
from .exchange import ExchangeClient
from .ledger import ProfitLedger
from .models import Balance, LiquidationIntent, Position, SymbolInfo
from .reconstructor import reconstruct
from .stoploss import evaluate
from .utils import amounts_equal


@dataclass
class SymbolResult:
    symbol: str
    position: Position
    intent: Optional[LiquidationIntent] = None
    error: Optional[str] = None
    free: Optional[float] = None
    rehearsed: bool = False


@dataclass
class TickReport:
    skipped: bool = False
    evaluated: int = 0
    held: int = 0
    failed: List[str] = field(default_factory=list)
    intents: List[LiquidationIntent] = field(default_factory=list)
    orders: Dict[str, str] = field(default_factory=dict)
    order_failures: List[str] = field(default_factory=list)

    def summary(self) -> str:
        if self.skipped:
            return "tick skipped"
        return (f"evaluated={self.evaluated} held={self.held} failed={len(self.failed)} "
                f"liquidations={len(self.intents)} order_failures={len(self.order_failures)}")


class PositionTracker:
    """Owns the watch list and positions for one exchange account."""

    def __init__(self, client: ExchangeClient, config: TrackerConfig, ledger: Optional[ProfitLedger] = None,
                 dry_run: bool = False):
        self.client = client
        self.config = config
        self.ledger = ledger if ledger is not None else ProfitLedger()
        self.dry_run = dry_run
        self.watch: List[SymbolInfo] = []
        self.last_tick: Optional[TickReport] = None
        self._positions: Dict[str, Position] = {}
        self._lock = Lock()
        # dry-run liquidations by symbol, keyed to the free balance they were decided on
        self._rehearsed: Dict[str, float] = {}

    # ------------------------------------------------------------------
    def init(self) -> List[SymbolInfo]:
        quote = self.config.quote.lower()
        ignore = {f"{coin.lower()}{quote}" for coin in self.config.ignore}
        logging.info("ignore: %s", sorted(ignore))
        symbols = [s for s in self.client.get_symbols() if s.quote.lower() == quote]
        self.watch = [s for s in symbols if s.symbol.lower() not in ignore]
        with self._lock:
            self._positions = {s.symbol: Position.flat(s.symbol) for s in self.watch}
        logging.info("Watching %d %s symbols on %s", len(self.watch), quote.upper(), self.client.name)
        return list(self.watch)

    @property
    def positions(self) -> Dict[str, Position]:
        with self._lock:
            return dict(self._positions)

    def held_positions(self) -> List[Position]:
        return [p for p in self.positions.values() if p.amount > 0 and p.price > 0]

    def snapshot(self) -> Dict[str, object]:
        last = self.last_tick
        return {
            "exchange": self.client.name,
            "dry_run": self.dry_run,
            "watch": len(self.watch),
            "positions": [asdict(p) for p in self.held_positions()],
            "ledger": self.ledger.snapshot(),
            "last_tick": last.summary() if last is not None else None,
        }

    # ------------------------------------------------------------------
    def _refresh(self, info: SymbolInfo, previous: Position, balances: Dict[str, Balance]) -> SymbolResult:
        stop = self.config.stop
        balance = balances.get(info.base.upper())
        rehearsed = self._rehearsed.get(info.symbol)
        if rehearsed is not None and balance is not None and amounts_equal(balance.free, rehearsed):
            return SymbolResult(info.symbol, previous, rehearsed=True)
        if balance is not None and amounts_equal(balance.free, previous.amount) and previous.is_dust(stop.min_value):
            return SymbolResult(info.symbol, previous)
        try:
            bid = self.client.get_ticker(info.symbol).bid.price
            if bid <= 0:
                logging.warning("%s has no usable bid (%s), keeping previous position", info.symbol, bid)
                return SymbolResult(info.symbol, previous, error="no bid")
            if balance is None:
                logging.debug("%s not found in balances", info.base)
                position = previous
            else:
                position = reconstruct(previous, balance, lambda: self.client.get_history_orders(info.symbol),
                                       bid, stop.min_value)
        except ExchangeError as exc:
            logging.warning("refresh %s failed: %s", info.symbol, exc)
            return SymbolResult(info.symbol, previous, error=str(exc))
        if position.amount > 0 and position != previous:
            logging.debug("old_pos: %s, new_pos: %s", previous, position)
        position, intent = evaluate(position, bid, stop, info.price_precision)
        return SymbolResult(info.symbol, position, intent, free=balance.free if balance is not None else None)

    def _refresh_all(self, previous: Dict[str, Position], balances: Dict[str, Balance]) -> List[SymbolResult]:
        def work(info: SymbolInfo) -> SymbolResult:
            return self._refresh(info, previous.get(info.symbol, Position.flat(info.symbol)), balances)

        if self.config.max_workers <= 1 or len(self.watch) <= 1:
            return [work(info) for info in self.watch]
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as ex:
            return list(ex.map(work, self.watch))

    def _execute(self, intent: LiquidationIntent, report: TickReport) -> None:
        record = self.ledger.append(intent.record)
        if self.dry_run:
            logging.info("[dry-run] would %s %.8f %s at %s (%s)", intent.side, intent.amount, intent.symbol,
                         intent.price, intent.reason)
            return
        try:
            if self.config.cancel_before_sell:
                self.client.cancel_all(intent.symbol)
            order_id = self.client.create_order(intent.symbol, intent.price, intent.amount, intent.side,
                                                intent.order_type)
        except (ExchangeError, ValueError) as exc:
            logging.warning("%s liquidation order failed, ledger already booked profit %.2f: %s", intent.symbol,
                            record.profit, exc)
            report.order_failures.append(intent.symbol)
            return
        report.orders[intent.symbol] = order_id
        logging.info("%s liquidation order placed, order_id: %s", intent.symbol, order_id)

    def on_tick(self) -> TickReport:
        report = TickReport()
        try:
            balances = self.client.get_all_balances()
        except ExchangeError as exc:
            logging.warning("get_all_balances error: %s", exc)
            report.skipped = True
            self.last_tick = report
            return report
        by_asset = {b.asset.upper(): b for b in balances}

        results = self._refresh_all(self.positions, by_asset)

        new_positions: Dict[str, Position] = {}
        for result in results:
            new_positions[result.symbol] = result.position
            if not result.rehearsed:
                self._rehearsed.pop(result.symbol, None)
            report.evaluated += 1
            if result.error is not None:
                report.failed.append(result.symbol)
            if result.intent is not None:
                report.intents.append(result.intent)
                self._execute(result.intent, report)
                if self.dry_run and result.free is not None:
                    self._rehearsed[result.symbol] = result.free
        with self._lock:
            self._positions = new_positions
        report.held = sum(1 for p in new_positions.values() if p.amount > 0 and p.price > 0)
        if report.intents or report.held:
            logging.info("total_profit: %.2f, records: %d", self.ledger.total_profit, len(self.ledger))
        self.last_tick = report
        return report
