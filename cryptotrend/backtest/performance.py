"""
Per-asset signal performance.

Each asset is scored on its own signal-weighted daily returns: the weight
decided at one close is held until the next close. These figures feed the
ExecutionModePolicy.
"""

import logging
from typing import Dict, List

import numpy as np

from cryptotrend.core.models import AssetPerformance, SignalRecord

from .statistics import max_drawdown, profit_factor, sharpe_ratio

logger = logging.getLogger(__name__)


def signal_returns(records: List[SignalRecord]) -> List[float]:
    """weight[t-1] * (close[t] / close[t-1] - 1) for every day entered with weight > 0."""
    returns = []
    for prev, cur in zip(records, records[1:]):
        if prev.weight > 0 and prev.close > 0:
            returns.append(prev.weight * (cur.close / prev.close - 1.0))
    return returns


def asset_performance(asset: str, records: List[SignalRecord]) -> AssetPerformance:
    """Performance of one asset's own signals."""
    records = sorted(records, key=lambda r: r.date)
    returns = signal_returns(records)
    if not returns:
        return AssetPerformance(asset=asset)

    growth = np.cumprod([1.0 + r for r in returns])
    wins = [r for r in returns if r > 0]

    return AssetPerformance(
        asset=asset,
        trading_days=len(returns),
        total_return=float(growth[-1] - 1.0),
        win_rate=len(wins) / len(returns),
        profit_factor=profit_factor(returns),
        max_drawdown=max_drawdown([1.0] + list(growth)),
        sharpe_ratio=sharpe_ratio(returns),
    )


def performance_by_asset(signals: Dict[str, List[SignalRecord]]) -> Dict[str, AssetPerformance]:
    return {asset: asset_performance(asset, records) for asset, records in signals.items()}
