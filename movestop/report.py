import json
import os
from dataclasses import asdict

import matplotlib.pyplot as plt
import pandas as pd

from .ledger import ProfitLedger

TRADE_COLUMNS = ["ts", "symbol", "reason", "buy_price", "sell_price", "amount", "profit"]


def ledger_frame(ledger: ProfitLedger) -> pd.DataFrame:
    rows = [asdict(r) for r in ledger.records]
    if not rows:
        return pd.DataFrame(columns=TRADE_COLUMNS)
    return pd.DataFrame(rows)[TRADE_COLUMNS]


def summarize(trades: pd.DataFrame) -> dict:
    if trades.empty:
        return {"trades": 0, "total_profit": 0.0, "wins": 0, "losses": 0, "by_reason": {}}
    return {
        "trades": int(len(trades)),
        "total_profit": round(float(trades["profit"].sum()), 2),
        "wins": int((trades["profit"] > 0).sum()),
        "losses": int((trades["profit"] < 0).sum()),
        "by_reason": {k: int(v) for k, v in trades["reason"].value_counts().items()},
    }


def save_ledger(out_dir, ledger: ProfitLedger, plot=True) -> dict:
    os.makedirs(out_dir, exist_ok=True)
    trades = ledger_frame(ledger)
    trades.to_csv(os.path.join(out_dir, "trades.csv"), index=False)
    summary = summarize(trades)
    with open(os.path.join(out_dir, "summary.json"), "w", encoding="utf-8") as f:
        json.dump(summary, f, ensure_ascii=False, indent=2)

    if plot and not trades.empty:
        curve = trades.assign(ts=pd.to_datetime(trades["ts"]), cumulative=trades["profit"].cumsum())
        fig = plt.figure(figsize=(10, 5))
        ax = plt.gca()
        curve.plot(x="ts", y="cumulative", ax=ax, label="Realized profit", drawstyle="steps-post")
        ax.legend()
        fig.autofmt_xdate()
        fig.savefig(os.path.join(out_dir, "profit.png"), dpi=120, bbox_inches="tight")
        plt.close(fig)
    return summary
