"""Cryptotrend portfolio backtesting."""

from .engine import BacktestEngine, BacktestResult
from .statistics import (
    MetricsCalculator,
    PortfolioMetrics,
    cagr,
    max_drawdown,
    profit_factor,
    sharpe_ratio,
)
from .performance import asset_performance, performance_by_asset, signal_returns
from .reporter import BacktestReporter

__all__ = [
    "BacktestEngine",
    "BacktestResult",
    "MetricsCalculator",
    "PortfolioMetrics",
    "cagr",
    "max_drawdown",
    "profit_factor",
    "sharpe_ratio",
    "asset_performance",
    "performance_by_asset",
    "signal_returns",
    "BacktestReporter",
]
