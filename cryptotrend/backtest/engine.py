"""
Portfolio Backtest Engine

Replays daily SignalRecords over the union of trading days. One portfolio
transition per day, all trades at the close:

    1. mark holdings priced today (unpriced holdings keep their last mark)
    2. exit longs whose close fell below the stop they were sized with
    3. qualifying longs = today's records with weight > 0
    4. equal allocation: equity * weight / n, capped by max_position_percent
       and by (entry - stop) * shares <= risk_cap_percent of equity
    5. exit longs that no longer qualify
    6. short the baseline for btc_hedge * long exposure while it is bearish
    7. append the equity point

Positions still open after the last day are closed at their last mark.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Set

import pandas as pd

from cryptotrend.core.enums import ExitReason
from cryptotrend.core.exceptions import ConfigurationError
from cryptotrend.core.models import (
    ClosedPosition,
    EquityPoint,
    OpenPosition,
    PortfolioState,
    SignalRecord,
)
from cryptotrend.signals.indicators import rolling_mean

from .statistics import MetricsCalculator, PortfolioMetrics

logger = logging.getLogger(__name__)

# Share quantities below this are treated as flat
MIN_SHARES = 1e-12


@dataclass
class BacktestResult:
    """Output of one portfolio simulation."""

    starting_equity: float
    equity_curve: List[EquityPoint] = field(default_factory=list)
    closed_positions: List[ClosedPosition] = field(default_factory=list)
    metrics: Optional[PortfolioMetrics] = None

    @property
    def final_equity(self) -> float:
        return self.equity_curve[-1].equity if self.equity_curve else self.starting_equity

    def equity_frame(self) -> pd.DataFrame:
        """date, equity, daily_return."""
        return pd.DataFrame(
            [
                {"date": p.date, "equity": p.equity, "daily_return": p.daily_return}
                for p in self.equity_curve
            ],
            columns=["date", "equity", "daily_return"],
        )


class BacktestEngine:
    """
    Deterministic multi-asset portfolio simulation.

    Usage:
        engine = BacktestEngine(settings)
        result = engine.run(signals_by_asset, baseline_bars)
    """

    def __init__(
        self,
        settings: Any = None,
        initial_equity: Optional[float] = None,
        risk_cap_percent: Optional[float] = None,
        max_position_percent: Optional[float] = None,
        btc_hedge: Optional[float] = None,
        ma_short: Optional[int] = None,
        ma_long: Optional[int] = None,
        baseline_symbol: Optional[str] = None,
    ):
        self.initial_equity = initial_equity or getattr(settings, "portfolio_value", 100_000.0)
        self.risk_cap_percent = (
            risk_cap_percent
            if risk_cap_percent is not None
            else getattr(settings, "risk_cap_percent", 1.0)
        )
        self.max_position_percent = (
            max_position_percent
            if max_position_percent is not None
            else getattr(settings, "max_position_percent", 100.0)
        )
        self.btc_hedge = btc_hedge if btc_hedge is not None else getattr(settings, "btc_hedge", 0.3)
        self.ma_short = ma_short or getattr(settings, "ma_short", 7)
        self.ma_long = ma_long or getattr(settings, "ma_long", 30)
        self.baseline_symbol = baseline_symbol or getattr(settings, "baseline_symbol", "BTC")

        if self.initial_equity <= 0:
            raise ConfigurationError(f"initial equity must be > 0, got {self.initial_equity}")
        if not 0.0 <= self.btc_hedge <= 1.0:
            raise ConfigurationError(f"btc_hedge must be within [0, 1], got {self.btc_hedge}")

        self.metrics_calculator = MetricsCalculator()

    # -------------------------------------------------------------------------
    # Baseline
    # -------------------------------------------------------------------------

    def baseline_regime(self, baseline: Optional[pd.DataFrame]) -> Dict[date, bool]:
        """date -> True when the baseline is bearish (close < MA_long and MA_short < MA_long)."""
        if baseline is None or baseline.empty:
            return {}
        close = baseline["close"].astype(float)
        ma_s = rolling_mean(close, self.ma_short)
        ma_l = rolling_mean(close, self.ma_long)
        bearish = (close < ma_l) & (ma_s < ma_l)
        return {ts.date(): bool(flag) for ts, flag in bearish.items()}

    # -------------------------------------------------------------------------
    # Simulation
    # -------------------------------------------------------------------------

    def run(
        self,
        signals: Dict[str, List[SignalRecord]],
        baseline: Optional[pd.DataFrame] = None,
    ) -> BacktestResult:
        """
        Simulate the portfolio.

        Args:
            signals: asset -> SignalRecords (any order).
            baseline: Baseline bars indexed by date, used for the hedge.

        Returns:
            BacktestResult with the equity curve, closed positions and metrics.
        """
        by_day: Dict[date, Dict[str, SignalRecord]] = {}
        for asset, records in signals.items():
            for rec in records:
                by_day.setdefault(rec.date, {})[asset] = rec

        baseline_close: Dict[date, float] = {}
        if baseline is not None and not baseline.empty:
            baseline_close = {ts.date(): float(v) for ts, v in baseline["close"].items()}
        bearish = self.baseline_regime(baseline)

        # Assets sharing at least one date with the baseline count toward hedge exposure
        overlapping: Set[str] = {
            asset
            for asset, records in signals.items()
            if any(rec.date in baseline_close for rec in records)
        }

        result = BacktestResult(starting_equity=self.initial_equity)
        state = PortfolioState(cash=self.initial_equity, equity=self.initial_equity)
        open_positions: Dict[str, OpenPosition] = {}
        marks: Dict[str, float] = {}
        prev_equity = self.initial_equity
        hedge_key = self.baseline_symbol

        days = sorted(by_day)
        logger.info(f"Backtest over {len(days)} days, {len(signals)} assets")

        for day in days:
            today = by_day[day]

            # 1. Mark to market
            for asset, rec in today.items():
                marks[asset] = rec.close
            if day in baseline_close:
                marks[hedge_key] = baseline_close[day]
            equity = state.cash + state.market_value(marks)

            # 2. Stop exits
            stopped: Set[str] = set()
            for asset in list(open_positions):
                rec = today.get(asset)
                pos = open_positions[asset]
                if rec is None or pos.stop_price is None:
                    continue
                if rec.close < pos.stop_price:
                    self._close(state, open_positions, result, asset, day, rec.close, ExitReason.STOP)
                    stopped.add(asset)

            # 3. Qualifying longs
            qualifying = [
                (asset, rec)
                for asset, rec in sorted(today.items())
                if rec.weight > 0
                and asset not in stopped
                and rec.stop_price is not None
                and rec.stop_price < rec.close
            ]
            qualifying_assets = {asset for asset, _ in qualifying}

            # 5. Exit longs that no longer qualify (only tradable when priced today)
            for asset in list(open_positions):
                if asset in today and asset not in qualifying_assets:
                    self._close(
                        state, open_positions, result, asset, day, today[asset].close, ExitReason.SIGNAL
                    )

            # 4. Allocate
            n = len(qualifying)
            for asset, rec in qualifying:
                target = self.target_shares(equity, rec, n)
                self._rebalance(state, open_positions, result, asset, day, rec, target)

            # 6. Hedge
            hedge_value = self._update_hedge(
                state, marks, day in baseline_close, bearish.get(day, False), overlapping
            )

            # 7. Equity point
            equity = state.cash + state.market_value(marks)
            state.equity = equity
            daily_return = equity / prev_equity - 1.0 if result.equity_curve and prev_equity > 0 else 0.0
            result.equity_curve.append(
                EquityPoint(
                    date=day,
                    equity=equity,
                    daily_return=daily_return,
                    num_positions=len(open_positions),
                    hedge_value=hedge_value,
                )
            )
            prev_equity = equity

        # 8. Close what is left at the last mark
        if days:
            last_day = days[-1]
            for asset in list(open_positions):
                self._close(
                    state, open_positions, result, asset, last_day, marks[asset], ExitReason.END_OF_DATA
                )
            hedge = state.positions.pop(hedge_key, 0.0)
            state.cash += hedge * marks.get(hedge_key, 0.0)

        result.metrics = self.metrics_calculator.calculate(
            result.equity_curve, result.closed_positions, self.initial_equity
        )
        logger.info(
            f"Backtest complete: final equity {result.final_equity:,.2f}, "
            f"{len(result.closed_positions)} closed positions"
        )
        return result

    def target_shares(self, equity: float, rec: SignalRecord, n: int) -> float:
        """Shares for one qualifying long under equal allocation and both caps."""
        if n <= 0 or equity <= 0 or rec.stop_price is None or rec.close <= 0:
            return 0.0
        risk_per_share = rec.close - rec.stop_price
        if risk_per_share <= 0:
            return 0.0
        target_value = equity * rec.weight / n
        target_value = min(target_value, self.max_position_percent / 100.0 * equity)
        max_risk_shares = self.risk_cap_percent / 100.0 * equity / risk_per_share
        return max(0.0, min(target_value / rec.close, max_risk_shares))

    # -------------------------------------------------------------------------
    # Position bookkeeping
    # -------------------------------------------------------------------------

    def _rebalance(
        self,
        state: PortfolioState,
        open_positions: Dict[str, OpenPosition],
        result: BacktestResult,
        asset: str,
        day: date,
        rec: SignalRecord,
        target: float,
    ) -> None:
        pos = open_positions.get(asset)
        if target <= MIN_SHARES:
            if pos is not None:
                self._close(state, open_positions, result, asset, day, rec.close, ExitReason.SIGNAL)
            return

        price = rec.close
        if pos is None:
            open_positions[asset] = OpenPosition(
                asset=asset,
                entry_date=day,
                entry_price=price,
                shares=target,
                stop_price=rec.stop_price,
            )
            state.cash -= target * price
            state.positions[asset] = target
            return

        delta = target - pos.shares
        if delta > 0:
            pos.entry_price = (pos.entry_price * pos.shares + price * delta) / target
        elif delta < 0:
            pos.realized_pnl += (price - pos.entry_price) * -delta
        pos.shares = target
        pos.stop_price = rec.stop_price
        state.cash -= delta * price
        state.positions[asset] = target

    def _close(
        self,
        state: PortfolioState,
        open_positions: Dict[str, OpenPosition],
        result: BacktestResult,
        asset: str,
        day: date,
        price: float,
        reason: ExitReason,
    ) -> None:
        pos = open_positions.pop(asset)
        state.cash += pos.shares * price
        state.positions.pop(asset, None)
        result.closed_positions.append(
            ClosedPosition(
                asset=asset,
                entry_date=pos.entry_date,
                exit_date=day,
                entry_price=pos.entry_price,
                exit_price=price,
                shares=pos.shares,
                exit_reason=reason,
                realized_pnl=pos.realized_pnl,
            )
        )
        logger.debug(f"{day} close {asset} @ {price:.6f} ({reason.value})")

    def _update_hedge(
        self,
        state: PortfolioState,
        marks: Dict[str, float],
        priced_today: bool,
        bearish: bool,
        overlapping: Set[str],
    ) -> float:
        """Resize the baseline short. Returns the hedge market value (<= 0)."""
        key = self.baseline_symbol
        current = state.positions.get(key, 0.0)
        price = marks.get(key)
        if price is None:
            return 0.0
        # Only tradable on days the baseline is priced
        if not priced_today or price <= 0:
            return current * price

        target = 0.0
        if self.btc_hedge > 0 and bearish:
            long_exposure = state.long_exposure(marks, overlapping)
            target = -self.btc_hedge * long_exposure / price

        state.cash -= (target - current) * price
        if abs(target) > MIN_SHARES:
            state.positions[key] = target
        else:
            state.positions.pop(key, None)
        return target * price
