"""
Cryptotrend enumerations.
"""

from enum import Enum


class ConfidenceMode(str, Enum):
    """How a qualifying signal should be executed."""

    SIGNAL_AT_CLOSE = "signal_at_close"
    PULLBACK_TO_MA = "pullback_to_ma"


class ExitReason(str, Enum):
    """Why a simulated position was closed."""

    SIGNAL = "signal"
    STOP = "stop"
    END_OF_DATA = "end_of_data"


class FetchStatus(str, Enum):
    """Outcome of refreshing one asset series."""

    UPDATED = "updated"
    UP_TO_DATE = "up_to_date"
    SKIPPED = "skipped"
    FAILED = "failed"


class SchedulerState(str, Enum):
    """Daemon lifecycle state."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class TriggerKind(str, Enum):
    """How the daemon computes its next run."""

    INTERVAL = "interval"
    DAILY_AT = "daily_at"
