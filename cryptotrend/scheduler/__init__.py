"""Cryptotrend scheduling: run lock, triggers and the daemon loop."""

from .run_lock import RunLock
from .triggers import TriggerMode, next_trigger, parse_hhmm, seconds_until
from .daemon import (
    CycleOutcome,
    DaemonScheduler,
    EXIT_LOCKED,
    EXIT_NO_SUCCESS,
    EXIT_OK,
)

__all__ = [
    "RunLock",
    "TriggerMode",
    "next_trigger",
    "parse_hhmm",
    "seconds_until",
    "CycleOutcome",
    "DaemonScheduler",
    "EXIT_LOCKED",
    "EXIT_NO_SUCCESS",
    "EXIT_OK",
]
