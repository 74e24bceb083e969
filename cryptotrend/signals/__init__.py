"""Cryptotrend signal engine."""

from .indicators import (
    average_true_range,
    daily_returns,
    relative_strength,
    returns_volatility,
    rolling_mean,
    true_range,
)
from .engine import (
    SignalParams,
    compute_signals,
    latest_signal,
    position_size,
    signal_weight,
    stop_price,
)
from .execution_mode import ExecutionMode, ExecutionModePolicy, assign_confidence_modes

__all__ = [
    "average_true_range",
    "daily_returns",
    "relative_strength",
    "returns_volatility",
    "rolling_mean",
    "true_range",
    "SignalParams",
    "compute_signals",
    "latest_signal",
    "position_size",
    "signal_weight",
    "stop_price",
    "ExecutionMode",
    "ExecutionModePolicy",
    "assign_confidence_modes",
]
