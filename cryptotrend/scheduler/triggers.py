"""
Cycle triggers for the daemon.

Two modes:
- INTERVAL: every ``interval`` after the previous run
- DAILY_AT: next local occurrence of HH:MM (tomorrow if already passed)

``next_trigger`` is pure: it never reads the clock.
"""

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Any, Optional

from cryptotrend.core.enums import TriggerKind
from cryptotrend.core.exceptions import ConfigurationError


def parse_hhmm(value: str) -> time:
    """
    Parse "HH:MM" (24h) into a time.

    Raises:
        ConfigurationError: on anything else ("5", "25:00", "05:60", "ab:cd").
    """
    parts = (value or "").strip().split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ConfigurationError(f"invalid time {value!r}, expected HH:MM")
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ConfigurationError(f"invalid time {value!r}, expected HH:MM")
    return time(hour=hour, minute=minute)


@dataclass(frozen=True)
class TriggerMode:
    """How the daemon schedules its next cycle."""

    kind: TriggerKind = TriggerKind.INTERVAL
    interval: timedelta = timedelta(minutes=60)
    at: Optional[time] = None

    def __post_init__(self):
        if self.kind == TriggerKind.DAILY_AT and self.at is None:
            raise ConfigurationError("daily trigger needs a time of day")
        if self.kind == TriggerKind.INTERVAL and self.interval <= timedelta(0):
            raise ConfigurationError(f"interval must be positive, got {self.interval}")

    @classmethod
    def daily(cls, hhmm: str) -> "TriggerMode":
        return cls(kind=TriggerKind.DAILY_AT, at=parse_hhmm(hhmm))

    @classmethod
    def every(cls, minutes: float) -> "TriggerMode":
        return cls(kind=TriggerKind.INTERVAL, interval=timedelta(minutes=minutes))

    @classmethod
    def from_settings(cls, settings: Any = None) -> "TriggerMode":
        daily_at = getattr(settings, "daily_at", None)
        if daily_at:
            return cls.daily(daily_at)
        return cls.every(getattr(settings, "check_interval_minutes", 60))

    def describe(self) -> str:
        if self.kind == TriggerKind.DAILY_AT:
            return f"daily at {self.at.strftime('%H:%M')}"
        return f"every {self.interval.total_seconds() / 60:g} min"


def next_trigger(now: datetime, mode: TriggerMode, last_run: Optional[datetime] = None) -> datetime:
    """
    When the next cycle should start (never earlier than ``now``).

    Args:
        now: Current local time.
        mode: Trigger configuration.
        last_run: Start of the previous cycle, if any.
    """
    if mode.kind == TriggerKind.DAILY_AT:
        candidate = now.replace(hour=mode.at.hour, minute=mode.at.minute, second=0, microsecond=0)
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate

    if last_run is None:
        return now
    return max(now, last_run + mode.interval)


def seconds_until(now: datetime, when: datetime) -> float:
    return max(0.0, (when - now).total_seconds())
