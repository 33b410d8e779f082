"""In-memory realized-profit ledger."""
from __future__ import annotations

from dataclasses import asdict, replace
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List

from .models import Record


class ProfitLedger:
    """Append-only list of closed trades plus a running profit total.

    Records are booked when a liquidation is decided, not when the sell order
    fills. Readers on other threads (the status server) get copies.
    """

    def __init__(self):
        self._lock = Lock()
        self._records: List[Record] = []
        self._total_profit = 0.0

    def append(self, record: Record) -> Record:
        if record.ts is None:
            record = replace(record, ts=datetime.now(timezone.utc).isoformat())
        with self._lock:
            self._records.append(record)
            self._total_profit += record.profit
        return record

    @property
    def records(self) -> List[Record]:
        with self._lock:
            return list(self._records)

    @property
    def total_profit(self) -> float:
        with self._lock:
            return self._total_profit

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            return {
                "total_profit": round(self._total_profit, 2),
                "records": [asdict(r) for r in self._records],
            }
