"""
Backtest Reporter

Writes signal, equity and metrics files (atomically) and formats a short
summary for the logs.

    signals/signals_{ASSET}.csv
    equity_curve.csv
    metrics.txt
    asset_performance.csv
"""

import logging
import math
from pathlib import Path
from typing import Dict, List, Optional, Union

import pandas as pd

from cryptotrend.core.models import AssetPerformance, SignalRecord
from cryptotrend.data.store import atomic_write_text
from cryptotrend.signals.execution_mode import ExecutionMode

from .engine import BacktestResult
from .statistics import PortfolioMetrics

logger = logging.getLogger(__name__)

SIGNAL_COLUMNS = [
    "date",
    "ma_short",
    "ma_long",
    "rs_ma_short",
    "rs_ma_long",
    "trend",
    "momentum",
    "rs_bull",
    "weight",
    "stop_price",
    "position_size",
]


def _num(value: Optional[float], digits: int = 8) -> str:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return ""
    if math.isinf(value):
        return "inf"
    return f"{value:.{digits}f}"


def _flag(value: bool) -> str:
    return "true" if value else "false"


class BacktestReporter:
    """Persist and summarise engine output under one output directory."""

    def __init__(self, out_dir: Union[str, Path], signals_dir: Optional[Union[str, Path]] = None):
        self.out_dir = Path(out_dir)
        self.signals_dir = Path(signals_dir) if signals_dir else self.out_dir / "signals"

    def signals_path(self, asset: str) -> Path:
        return self.signals_dir / f"signals_{asset}.csv"

    def write_signals(self, asset: str, records: List[SignalRecord]) -> Path:
        rows = [
            {
                "date": r.date.isoformat(),
                "ma_short": _num(r.ma_short),
                "ma_long": _num(r.ma_long),
                "rs_ma_short": _num(r.rs_ma_short),
                "rs_ma_long": _num(r.rs_ma_long),
                "trend": _flag(r.trend),
                "momentum": _flag(r.momentum),
                "rs_bull": _flag(r.rs_bull),
                "weight": _num(r.weight, 2),
                "stop_price": _num(r.stop_price),
                "position_size": _num(r.position_size),
            }
            for r in records
        ]
        df = pd.DataFrame(rows, columns=SIGNAL_COLUMNS)
        path = self.signals_path(asset)
        atomic_write_text(path, df.to_csv(index=False, lineterminator="\n"))
        return path

    def write_equity_curve(self, result: BacktestResult) -> Path:
        df = result.equity_frame()
        df["date"] = df["date"].map(lambda d: d.isoformat())
        path = self.out_dir / "equity_curve.csv"
        atomic_write_text(path, df.to_csv(index=False, float_format="%.8f", lineterminator="\n"))
        return path

    def write_metrics(self, metrics: PortfolioMetrics) -> Path:
        text = "".join(f"{key}: {value}\n" for key, value in metrics.as_report().items())
        path = self.out_dir / "metrics.txt"
        atomic_write_text(path, text)
        return path

    def write_asset_performance(
        self,
        performance: Dict[str, AssetPerformance],
        modes: Optional[Dict[str, ExecutionMode]] = None,
    ) -> Path:
        modes = modes or {}
        rows = []
        for asset in sorted(performance):
            perf = performance[asset]
            mode = modes.get(asset)
            rows.append(
                {
                    "asset": asset,
                    "trading_days": perf.trading_days,
                    "total_return": _num(perf.total_return, 6),
                    "win_rate": _num(perf.win_rate, 6),
                    "profit_factor": _num(perf.profit_factor, 6),
                    "max_drawdown": _num(perf.max_drawdown, 6),
                    "sharpe_ratio": _num(perf.sharpe_ratio, 6),
                    "confidence_mode": mode.mode.value if mode else "",
                    "confidence_score": _num(mode.confidence_score, 4) if mode else "",
                    "extended_threshold": _num(mode.extended_threshold, 4) if mode else "",
                    "limit_order_hours": mode.limit_order_hours if mode else "",
                }
            )
        df = pd.DataFrame(
            rows,
            columns=[
                "asset",
                "trading_days",
                "total_return",
                "win_rate",
                "profit_factor",
                "max_drawdown",
                "sharpe_ratio",
                "confidence_mode",
                "confidence_score",
                "extended_threshold",
                "limit_order_hours",
            ],
        )
        path = self.out_dir / "asset_performance.csv"
        atomic_write_text(path, df.to_csv(index=False, lineterminator="\n"))
        return path

    def generate_summary(self, result: BacktestResult) -> str:
        m = result.metrics
        lines = [
            "=" * 60,
            "CRYPTOTREND BACKTEST SUMMARY",
            "=" * 60,
        ]
        if result.equity_curve:
            lines.append(
                f"Period: {result.equity_curve[0].date} to {result.equity_curve[-1].date}"
            )
        lines.extend(
            [
                f"Starting Equity:   {result.starting_equity:>14,.2f}",
                f"Final Equity:      {result.final_equity:>14,.2f}",
            ]
        )
        if m is not None:
            pf = "inf" if math.isinf(m.profit_factor) else f"{m.profit_factor:.2f}"
            lines.extend(
                [
                    f"Total Return:      {m.total_return * 100:>13.2f}%",
                    f"CAGR:              {m.cagr * 100:>13.2f}%",
                    f"Sharpe:            {m.sharpe_ratio:>14.2f}",
                    f"Max Drawdown:      {m.max_drawdown * 100:>13.2f}%",
                    f"Win Rate:          {m.win_rate * 100:>13.1f}%",
                    f"Profit Factor:     {pf:>14}",
                    f"Closed Positions:  {m.closed_positions:>14}",
                ]
            )
        return "\n".join(lines)
