"""
Portfolio statistics over a simulated equity curve.

Key metrics:
- CAGR (elapsed calendar days)
- Sharpe ratio (daily returns, annualised with sqrt(365))
- Max drawdown (fraction of the running peak)
- Win rate and profit factor (closed positions)
- Statistical significance of the mean daily return (t-test)
"""

import logging
import math
from dataclasses import asdict, dataclass
from typing import Dict, List, Sequence, Tuple

import numpy as np
from scipy import stats as sp_stats

from cryptotrend.core.models import ClosedPosition, EquityPoint

logger = logging.getLogger(__name__)

# Crypto trades every calendar day
ANNUALIZATION_DAYS = 365
DAYS_PER_YEAR = 365.25


def sharpe_ratio(returns: Sequence[float]) -> float:
    """mean / stdev(ddof=1) * sqrt(365); 0 with fewer than 2 returns or no variance."""
    arr = np.asarray(returns, dtype=float)
    if len(arr) < 2:
        return 0.0
    std = np.std(arr, ddof=1)
    if not std > 0:
        return 0.0
    return float(np.mean(arr) / std * np.sqrt(ANNUALIZATION_DAYS))


def max_drawdown(values: Sequence[float]) -> float:
    """Largest peak-to-trough decline as a fraction of the peak."""
    peak = -math.inf
    max_dd = 0.0
    for value in values:
        if value > peak:
            peak = value
        if peak > 0:
            dd = (peak - value) / peak
            if dd > max_dd:
                max_dd = dd
    return max_dd


def profit_factor(pnls: Sequence[float]) -> float:
    """
    Gross profit / gross loss.

    inf when there are profits and no losses, 0 when there is nothing.
    """
    gross_profit = sum(p for p in pnls if p > 0)
    gross_loss = abs(sum(p for p in pnls if p < 0))
    if gross_loss > 0:
        return gross_profit / gross_loss
    return math.inf if gross_profit > 0 else 0.0


def cagr(start_value: float, end_value: float, days: int) -> float:
    """Compound annual growth rate over ``days`` calendar days."""
    if start_value <= 0 or days <= 0:
        return 0.0
    if end_value <= 0:
        return -1.0
    return (end_value / start_value) ** (DAYS_PER_YEAR / days) - 1.0


@dataclass
class PortfolioMetrics:
    """Summary metrics of one backtest run."""

    cagr: float
    sharpe_ratio: float
    max_drawdown: float  # fraction
    win_rate: float  # fraction
    profit_factor: float
    trading_days: int
    total_return: float
    closed_positions: int
    t_statistic: float = 0.0
    p_value: float = 1.0

    def as_report(self) -> Dict[str, str]:
        """Ordered ``key -> value`` pairs for metrics.txt."""
        return {
            "CAGR": f"{self.cagr:.6f}",
            "Sharpe": f"{self.sharpe_ratio:.6f}",
            "MaxDrawdown": f"{self.max_drawdown:.6f}",
            "WinRate": f"{self.win_rate:.6f}",
            "ProfitFactor": "inf" if math.isinf(self.profit_factor) else f"{self.profit_factor:.6f}",
            "TradingDays": str(self.trading_days),
            "TotalReturn": f"{self.total_return:.6f}",
            "ClosedPositions": str(self.closed_positions),
            "TStatistic": f"{self.t_statistic:.6f}",
            "PValue": f"{self.p_value:.6f}",
        }

    def to_dict(self) -> dict:
        return asdict(self)


class MetricsCalculator:
    """Calculate portfolio metrics from an equity curve and closed positions."""

    def calculate(
        self,
        equity_curve: List[EquityPoint],
        closed: List[ClosedPosition],
        starting_equity: float,
    ) -> PortfolioMetrics:
        if not equity_curve:
            return PortfolioMetrics(
                cagr=0.0,
                sharpe_ratio=0.0,
                max_drawdown=0.0,
                win_rate=0.0,
                profit_factor=0.0,
                trading_days=0,
                total_return=0.0,
                closed_positions=len(closed),
            )

        final_equity = equity_curve[-1].equity
        total_return = final_equity / starting_equity - 1.0 if starting_equity > 0 else 0.0
        days = (equity_curve[-1].date - equity_curve[0].date).days
        returns = [p.daily_return for p in equity_curve[1:]]

        winners = [c for c in closed if c.is_winner]
        win_rate = len(winners) / len(closed) if closed else 0.0

        t_stat, p_value = self._significance_test(returns)

        return PortfolioMetrics(
            cagr=cagr(starting_equity, final_equity, days),
            sharpe_ratio=sharpe_ratio(returns),
            max_drawdown=max_drawdown([starting_equity] + [p.equity for p in equity_curve]),
            win_rate=win_rate,
            profit_factor=profit_factor([c.pnl for c in closed]),
            trading_days=len(equity_curve),
            total_return=total_return,
            closed_positions=len(closed),
            t_statistic=t_stat,
            p_value=p_value,
        )

    @staticmethod
    def _significance_test(returns: List[float]) -> Tuple[float, float]:
        """One-tailed t-test: is the mean daily return significantly > 0?"""
        if len(returns) < 2 or np.std(returns) == 0:
            return 0.0, 1.0

        t_stat, p_two = sp_stats.ttest_1samp(returns, 0)
        # Convert to one-tailed (H1: mean > 0)
        p_one = p_two / 2 if t_stat > 0 else 1 - p_two / 2
        return float(t_stat), float(p_one)
