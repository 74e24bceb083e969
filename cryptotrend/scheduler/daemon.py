"""
Cryptotrend Daemon Scheduler

Drives the trading cycle unattended:

    IDLE -> RUNNING -> SUCCESS | FAILED -> IDLE
    IDLE -> SKIPPED (lock held elsewhere) -> IDLE

The run lock is held for the whole cycle and released on every exit path.
A failed cycle is logged and the loop carries on. Stop requests (SIGINT,
SIGTERM, stop()) take effect between cycles, never mid-cycle.
"""

import asyncio
import logging
import signal
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional

from cryptotrend.core.enums import SchedulerState
from cryptotrend.core.exceptions import LockContentionError, SchedulingError

from .run_lock import RunLock
from .triggers import TriggerMode, next_trigger, seconds_until

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_NO_SUCCESS = 1
EXIT_LOCKED = 2


@dataclass
class CycleOutcome:
    """Result of one scheduled cycle."""

    state: SchedulerState
    exit_code: int
    started_at: datetime
    finished_at: Optional[datetime] = None
    error: Optional[str] = None
    result: Any = None


class DaemonScheduler:
    """
    Runs ``cycle`` once or on a trigger, under the run lock.

    ``cycle`` is an async callable taking ``tolerate_missing`` and returning
    an object with an ``exit_code`` (see TradingCycle.run).
    """

    def __init__(
        self,
        cycle: Callable[[bool], Awaitable[Any]],
        settings: Any = None,
        lock: Optional[RunLock] = None,
        trigger: Optional[TriggerMode] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.cycle = cycle
        self.lock = lock or RunLock.from_settings(settings)
        self.trigger = trigger or TriggerMode.from_settings(settings)
        self._now = clock or datetime.now

        self.state = SchedulerState.IDLE
        self.running = False
        self.cycle_count = 0
        self.last_run: Optional[datetime] = None
        self.history: List[CycleOutcome] = []
        self._stop_event: Optional[asyncio.Event] = None

    async def run_once(self, tolerate_missing: bool = False) -> CycleOutcome:
        """One cycle under the lock. Never raises for cycle failures."""
        started = self._now()
        self.last_run = started

        try:
            self.lock.acquire()
        except LockContentionError as e:
            self.state = SchedulerState.SKIPPED
            logger.warning(f"Cycle skipped: {e}")
            outcome = CycleOutcome(
                state=SchedulerState.SKIPPED,
                exit_code=EXIT_LOCKED,
                started_at=started,
                finished_at=self._now(),
                error=str(e),
            )
            self.history.append(outcome)
            return outcome
        except OSError as e:
            error = SchedulingError(f"could not take lock {self.lock.path}: {e}")
            self.state = SchedulerState.FAILED
            logger.error(f"Cycle failed: {error}")
            outcome = CycleOutcome(
                state=SchedulerState.FAILED,
                exit_code=EXIT_NO_SUCCESS,
                started_at=started,
                finished_at=self._now(),
                error=str(error),
            )
            self.history.append(outcome)
            return outcome

        self.state = SchedulerState.RUNNING
        self.cycle_count += 1
        logger.info("=" * 60)
        logger.info(f"CYCLE {self.cycle_count} START: {started:%Y-%m-%d %H:%M:%S}")

        result = None
        error = None
        try:
            result = await self.cycle(tolerate_missing)
            exit_code = getattr(result, "exit_code", EXIT_OK)
        except Exception as e:
            logger.exception(f"Cycle {self.cycle_count} failed: {e}")
            exit_code = EXIT_NO_SUCCESS
            error = str(e)
        finally:
            self.lock.release()

        self.state = SchedulerState.SUCCESS if exit_code == EXIT_OK else SchedulerState.FAILED
        finished = self._now()
        logger.info(
            f"CYCLE {self.cycle_count} {self.state.value.upper()}: "
            f"{(finished - started).total_seconds():.1f}s"
        )
        outcome = CycleOutcome(
            state=self.state,
            exit_code=exit_code,
            started_at=started,
            finished_at=finished,
            error=error,
            result=result,
        )
        self.history.append(outcome)
        return outcome

    async def run_forever(
        self,
        max_cycles: Optional[int] = None,
        install_signal_handlers: bool = True,
    ) -> None:
        """
        Run cycles on the trigger until stopped.

        Args:
            max_cycles: Stop after this many attempts (None = forever).
            install_signal_handlers: Map SIGINT/SIGTERM to stop().
        """
        if self.running:
            raise SchedulingError("daemon loop is already running")
        self.running = True
        self._stop_event = asyncio.Event()
        if install_signal_handlers:
            self._setup_signal_handlers()

        logger.info(f"Daemon started, trigger {self.trigger.describe()}")
        attempts = 0
        try:
            while self.running:
                await self.run_once(tolerate_missing=True)
                self.state = SchedulerState.IDLE
                attempts += 1

                if max_cycles is not None and attempts >= max_cycles:
                    break
                if not self.running:
                    break

                now = self._now()
                next_at = next_trigger(now, self.trigger, self.last_run)
                delay = seconds_until(now, next_at)
                logger.info(f"Next cycle at {next_at:%Y-%m-%d %H:%M} (in {delay:.0f}s)")
                await self._wait(delay)
        finally:
            if install_signal_handlers:
                self._remove_signal_handlers()
            self.running = False
            self.state = SchedulerState.IDLE
            logger.info(f"Daemon stopped after {attempts} cycle(s)")

    def stop(self) -> None:
        """Request shutdown; honoured once the current cycle finishes."""
        logger.info("Stop requested")
        self.running = False
        if self._stop_event is not None:
            self._stop_event.set()

    async def _wait(self, delay: float) -> None:
        if self._stop_event is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    def _setup_signal_handlers(self) -> None:
        """Set up handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        signals = [signal.SIGINT]
        # SIGTERM handling is not available on Windows
        if sys.platform != "win32":
            signals.append(signal.SIGTERM)
        for sig in signals:
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError):
                signal.signal(sig, lambda signum, frame: self.stop())

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError, ValueError):
                pass
