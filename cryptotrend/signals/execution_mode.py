"""
Execution mode policy.

Scores an asset's historical signal performance and decides whether a
qualifying signal may wait for a pullback to the moving average instead of
executing at the close. The score averages five factors (Sharpe, win rate,
drawdown, data depth, profit factor); thresholds come from settings.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from cryptotrend.core.enums import ConfidenceMode
from cryptotrend.core.models import AssetPerformance, SignalRecord

logger = logging.getLogger(__name__)


@dataclass
class ExecutionMode:
    """Selected execution style for one asset."""

    mode: ConfidenceMode
    confidence_score: float
    extended_threshold: float
    limit_order_hours: int

    @property
    def pullback_allowed(self) -> bool:
        return self.mode == ConfidenceMode.PULLBACK_TO_MA


class ExecutionModePolicy:
    """
    Maps AssetPerformance to an ExecutionMode.

    With no trading history the mode is always SIGNAL_AT_CLOSE.
    """

    def __init__(
        self,
        settings: Any = None,
        pullback_min_confidence: Optional[float] = None,
    ):
        self.pullback_min_confidence = (
            pullback_min_confidence
            if pullback_min_confidence is not None
            else getattr(settings, "pullback_min_confidence", 0.7)
        )
        self.sharpe_strong = getattr(settings, "policy_sharpe_strong", 2.0)
        self.win_rate_strong = getattr(settings, "policy_win_rate_strong", 0.80)
        self.win_rate_fair = getattr(settings, "policy_win_rate_fair", 0.60)
        self.drawdown_low = getattr(settings, "policy_drawdown_low", 0.05)
        self.drawdown_moderate = getattr(settings, "policy_drawdown_moderate", 0.15)
        self.trading_days_full = getattr(settings, "policy_trading_days_full", 15)
        self.trading_days_fair = getattr(settings, "policy_trading_days_fair", 10)
        self.profit_factor_strong = getattr(settings, "policy_profit_factor_strong", 3.0)
        self.profit_factor_fair = getattr(settings, "policy_profit_factor_fair", 2.0)

    def confidence_score(self, perf: AssetPerformance) -> float:
        """Mean of the five factor scores, in [0.3, 1.0]."""
        sharpe = 1.0 if perf.sharpe_ratio >= self.sharpe_strong else 0.5

        if perf.win_rate >= self.win_rate_strong:
            win_rate = 1.0
        elif perf.win_rate >= self.win_rate_fair:
            win_rate = 0.8
        else:
            win_rate = 0.4

        if perf.max_drawdown <= self.drawdown_low:
            drawdown = 1.0
        elif perf.max_drawdown <= self.drawdown_moderate:
            drawdown = 0.7
        else:
            drawdown = 0.3

        if perf.trading_days >= self.trading_days_full:
            data = 1.0
        elif perf.trading_days >= self.trading_days_fair:
            data = 0.8
        else:
            data = 0.5

        if perf.profit_factor >= self.profit_factor_strong:
            profit = 1.0
        elif perf.profit_factor >= self.profit_factor_fair:
            profit = 0.8
        else:
            profit = 0.5

        return (sharpe + win_rate + drawdown + data + profit) / 5.0

    @staticmethod
    def extended_threshold(perf: AssetPerformance) -> float:
        """How far above the MA price may run before an entry counts as extended."""
        if perf.max_drawdown <= 0.05 and perf.sharpe_ratio >= 1.5:
            return 0.15
        if perf.max_drawdown <= 0.10 and perf.sharpe_ratio >= 1.0:
            return 0.10
        return 0.05

    @staticmethod
    def limit_order_hours(score: float) -> int:
        if score >= 0.8:
            return 72
        if score >= 0.6:
            return 48
        return 24

    def select(self, perf: Optional[AssetPerformance]) -> ExecutionMode:
        if perf is None or not perf.has_history:
            return ExecutionMode(
                mode=ConfidenceMode.SIGNAL_AT_CLOSE,
                confidence_score=0.0,
                extended_threshold=0.05,
                limit_order_hours=24,
            )

        score = self.confidence_score(perf)
        mode = (
            ConfidenceMode.PULLBACK_TO_MA
            if score >= self.pullback_min_confidence
            else ConfidenceMode.SIGNAL_AT_CLOSE
        )
        return ExecutionMode(
            mode=mode,
            confidence_score=score,
            extended_threshold=self.extended_threshold(perf),
            limit_order_hours=self.limit_order_hours(score),
        )


def assign_confidence_modes(
    signals: Dict[str, List[SignalRecord]],
    performance: Dict[str, AssetPerformance],
    policy: Optional[ExecutionModePolicy] = None,
) -> Dict[str, ExecutionMode]:
    """Select a mode per asset and stamp it on that asset's records."""
    policy = policy or ExecutionModePolicy()
    modes: Dict[str, ExecutionMode] = {}
    for asset, records in signals.items():
        selected = policy.select(performance.get(asset))
        for record in records:
            record.confidence_mode = selected.mode
        modes[asset] = selected
        logger.debug(f"{asset}: {selected.mode.value} (confidence {selected.confidence_score:.2f})")
    return modes
