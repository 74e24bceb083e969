"""
Rolling indicators over daily close series.

All functions take pandas Series indexed by date and return a Series on
the same index. Values are NaN until the window is full; no forward fill.
"""

import pandas as pd


def rolling_mean(series: pd.Series, window: int) -> pd.Series:
    """Simple moving average over exactly ``window`` observations."""
    return series.rolling(window=window, min_periods=window).mean()


def true_range(high: pd.Series, low: pd.Series, close: pd.Series) -> pd.Series:
    """
    True Range = max of:
      - high - low
      - abs(high - previous_close)
      - abs(low - previous_close)

    NaN wherever high or low is missing.
    """
    prev_close = close.shift(1)
    tr1 = high - low
    tr2 = (high - prev_close).abs()
    tr3 = (low - prev_close).abs()
    tr = pd.concat([tr1, tr2, tr3], axis=1).max(axis=1)
    return tr.where(high.notna() & low.notna())


def average_true_range(
    high: pd.Series, low: pd.Series, close: pd.Series, period: int = 14
) -> pd.Series:
    """
    ATR = rolling mean of TR over ``period``.

    NaN unless high/low are present on every bar of the window.
    """
    return true_range(high, low, close).rolling(window=period, min_periods=period).mean()


def daily_returns(close: pd.Series) -> pd.Series:
    """Simple close-to-close returns (first value NaN)."""
    return close / close.shift(1) - 1.0


def returns_volatility(close: pd.Series, period: int = 14) -> pd.Series:
    """Population stdev of the last ``period`` daily returns."""
    return daily_returns(close).rolling(window=period, min_periods=period).std(ddof=0)


def relative_strength(asset_close: pd.Series, baseline_close: pd.Series) -> pd.Series:
    """
    Asset close / baseline close on the dates both exist.

    The result is indexed by the overlapping dates only.
    """
    aligned = pd.concat([asset_close, baseline_close], axis=1, join="inner").dropna()
    if aligned.empty:
        return pd.Series(dtype=float, index=pd.DatetimeIndex([], name=asset_close.index.name))
    return aligned.iloc[:, 0] / aligned.iloc[:, 1]
