"""
Signal Engine

Pure function of a bar window: no I/O, no clock, same input -> same output.

Per asset and date (once the window holds max(ma_long, stop_lookback) + 1
bars):

    trend     close > MA_long
    momentum  MA_short > MA_long
    rs_bull   RS_MA_short > RS_MA_long   (RS = asset / baseline close)

    weight    1.0 if 3/3 bullish
              0.5 if 2/3 bullish and rs_bull is one of them
              0.0 otherwise

    stop      close - ATR * atr_mult            (high/low on the whole window)
              close * (1 - stdev(returns) * vol_mult)  otherwise
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, List, Optional

import pandas as pd

from cryptotrend.core.exceptions import ConfigurationError
from cryptotrend.core.models import SignalRecord

from .indicators import (
    average_true_range,
    relative_strength,
    returns_volatility,
    rolling_mean,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignalParams:
    """Signal and sizing parameters."""

    ma_short: int = 7
    ma_long: int = 30
    stop_lookback: int = 14
    atr_mult: float = 3.0
    vol_mult: float = 2.5
    portfolio_value: float = 100_000.0
    risk_cap_percent: float = 1.0
    max_position_percent: float = 100.0

    def __post_init__(self):
        if self.ma_short < 1 or self.ma_long <= self.ma_short:
            raise ConfigurationError(
                f"need 1 <= ma_short < ma_long, got {self.ma_short}/{self.ma_long}"
            )
        if self.stop_lookback < 1:
            raise ConfigurationError(f"stop_lookback must be >= 1, got {self.stop_lookback}")
        if self.portfolio_value <= 0:
            raise ConfigurationError(f"portfolio_value must be > 0, got {self.portfolio_value}")

    @property
    def warmup(self) -> int:
        """Bars required before the first record."""
        return max(self.ma_long, self.stop_lookback) + 1

    @classmethod
    def from_settings(cls, settings: Any = None, **overrides) -> "SignalParams":
        values = {
            "ma_short": getattr(settings, "ma_short", cls.ma_short),
            "ma_long": getattr(settings, "ma_long", cls.ma_long),
            "stop_lookback": getattr(settings, "stop_lookback", cls.stop_lookback),
            "atr_mult": getattr(settings, "atr_mult", cls.atr_mult),
            "vol_mult": getattr(settings, "vol_mult", cls.vol_mult),
            "portfolio_value": getattr(settings, "portfolio_value", cls.portfolio_value),
            "risk_cap_percent": getattr(settings, "risk_cap_percent", cls.risk_cap_percent),
            "max_position_percent": getattr(
                settings, "max_position_percent", cls.max_position_percent
            ),
        }
        values.update(overrides)
        return cls(**values)


def signal_weight(trend: bool, momentum: bool, rs_bull: bool) -> float:
    """Conviction weight from the three bullish conditions."""
    score = int(trend) + int(momentum) + int(rs_bull)
    if score == 3:
        return 1.0
    if score == 2 and rs_bull:
        return 0.5
    return 0.0


def stop_price(
    close: float,
    atr: Optional[float],
    volatility: Optional[float],
    atr_mult: float,
    vol_mult: float,
) -> Optional[float]:
    """ATR stop when ATR is known and positive, else the volatility proxy."""
    if atr is not None and not math.isnan(atr) and atr > 0:
        return close - atr * atr_mult
    if volatility is not None and not math.isnan(volatility):
        return close * (1.0 - volatility * vol_mult)
    return None


def position_size(
    weight: float,
    close: float,
    stop: Optional[float],
    portfolio_value: float,
    risk_cap_percent: float,
    max_position_percent: float = 100.0,
) -> float:
    """
    Units to hold: weight * min(risk_budget / (close - stop), max_allocation).

    risk_budget    = risk_cap_percent% of portfolio_value
    max_allocation = max_position_percent% of portfolio_value / close

    Zero when there is no weight, no stop, or the stop is not below close.
    """
    if weight <= 0 or stop is None or close <= 0 or stop >= close:
        return 0.0
    risk_budget = risk_cap_percent / 100.0 * portfolio_value
    max_allocation = max_position_percent / 100.0 * portfolio_value / close
    return weight * min(risk_budget / (close - stop), max_allocation)


def _opt(value: Any) -> Optional[float]:
    return None if pd.isna(value) else float(value)


def compute_signals(
    asset: pd.DataFrame,
    baseline: Optional[pd.DataFrame],
    params: Optional[SignalParams] = None,
) -> List[SignalRecord]:
    """
    Daily signal records for one asset.

    Args:
        asset: Bars indexed by date with columns open/high/low/close
            (high/low may be NaN or absent).
        baseline: Baseline bars (same layout) or None. Relative strength is
            only defined on dates present in both.
        params: Signal parameters (defaults if None).

    Returns:
        One SignalRecord per date with enough history, in date order.
    """
    params = params or SignalParams()
    if asset is None or len(asset) < params.warmup:
        return []

    df = asset[~asset.index.duplicated(keep="last")].sort_index()
    close = df["close"].astype(float)
    high = df["high"].astype(float) if "high" in df else pd.Series(float("nan"), index=df.index)
    low = df["low"].astype(float) if "low" in df else pd.Series(float("nan"), index=df.index)

    ma_s = rolling_mean(close, params.ma_short)
    ma_l = rolling_mean(close, params.ma_long)
    atr = average_true_range(high, low, close, params.stop_lookback)
    vol = returns_volatility(close, params.stop_lookback)

    if baseline is not None and not baseline.empty:
        rs = relative_strength(close, baseline["close"].astype(float))
        rs_ma_s = rolling_mean(rs, params.ma_short).reindex(df.index)
        rs_ma_l = rolling_mean(rs, params.ma_long).reindex(df.index)
    else:
        rs_ma_s = pd.Series(float("nan"), index=df.index)
        rs_ma_l = pd.Series(float("nan"), index=df.index)

    records: List[SignalRecord] = []
    for i in range(params.warmup - 1, len(df)):
        c = float(close.iloc[i])
        ms, ml = float(ma_s.iloc[i]), float(ma_l.iloc[i])
        rss, rsl = _opt(rs_ma_s.iloc[i]), _opt(rs_ma_l.iloc[i])

        trend = c > ml
        momentum = ms > ml
        rs_bull = rss is not None and rsl is not None and rss > rsl
        weight = signal_weight(trend, momentum, rs_bull)
        stop = stop_price(c, _opt(atr.iloc[i]), _opt(vol.iloc[i]), params.atr_mult, params.vol_mult)

        records.append(
            SignalRecord(
                date=df.index[i].date(),
                close=c,
                ma_short=ms,
                ma_long=ml,
                rs_ma_short=rss,
                rs_ma_long=rsl,
                trend=trend,
                momentum=momentum,
                rs_bull=rs_bull,
                weight=weight,
                stop_price=stop,
                position_size=position_size(
                    weight,
                    c,
                    stop,
                    params.portfolio_value,
                    params.risk_cap_percent,
                    params.max_position_percent,
                ),
            )
        )
    return records


def latest_signal(
    asset: pd.DataFrame,
    baseline: Optional[pd.DataFrame],
    params: Optional[SignalParams] = None,
) -> Optional[SignalRecord]:
    """Most recent record, or None with insufficient history."""
    records = compute_signals(asset, baseline, params)
    return records[-1] if records else None
