"""
One trading cycle: acquire -> signals -> execution modes -> backtest -> reports.

The cycle itself does not lock; DaemonScheduler (or the one-shot entry
point) holds the RunLock around it. Compute-only runs over already
persisted data need no lock.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pandas as pd

from cryptotrend.backtest.engine import BacktestEngine, BacktestResult
from cryptotrend.backtest.performance import performance_by_asset
from cryptotrend.backtest.reporter import BacktestReporter
from cryptotrend.core.exceptions import CorruptPersistedDataError, DataError
from cryptotrend.core.models import AssetPerformance, SignalRecord
from cryptotrend.data.acquisition import AcquisitionReport, DataAcquisition
from cryptotrend.data.coingecko import CoinGeckoClient
from cryptotrend.data.rate_limiter import RateLimiter
from cryptotrend.data.store import BarStore, read_bars
from cryptotrend.signals.engine import SignalParams, compute_signals
from cryptotrend.signals.execution_mode import (
    ExecutionMode,
    ExecutionModePolicy,
    assign_confidence_modes,
)

logger = logging.getLogger(__name__)

UTC = timezone.utc


@dataclass
class CycleResult:
    """Everything one cycle produced."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    acquisition: Optional[AcquisitionReport] = None
    backtest: Optional[BacktestResult] = None
    signals: Dict[str, List[SignalRecord]] = field(default_factory=dict)
    performance: Dict[str, AssetPerformance] = field(default_factory=dict)
    modes: Dict[str, ExecutionMode] = field(default_factory=dict)
    skipped_assets: List[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        """0 on full or partial success, 1 when no asset succeeded."""
        if self.acquisition is not None:
            return self.acquisition.exit_code
        return 0 if self.signals else 1


class TradingCycle:
    """
    Runs the whole chain once.

    Usage:
        cycle = TradingCycle(settings)
        result = await cycle.run()                       # one-shot
        result = await cycle.run(tolerate_missing=True)  # daemon
    """

    def __init__(
        self,
        settings: Any = None,
        client_factory: Optional[Callable[[RateLimiter], Any]] = None,
        fetch: bool = True,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ):
        self.settings = settings
        self.fetch = fetch
        self.start = start
        self.end = end
        self.store = BarStore(getattr(settings, "out_dir", "./out"))
        self.reporter = BacktestReporter(
            self.store.out_dir, getattr(settings, "signals_dir", None)
        )
        self.params = SignalParams.from_settings(settings)
        self.policy = ExecutionModePolicy(settings)
        self.client_factory = client_factory or (
            lambda limiter: CoinGeckoClient(settings, limiter=limiter)
        )

    async def acquire(self) -> AcquisitionReport:
        """Refresh persisted series from upstream through one shared limiter."""
        limiter = RateLimiter.from_settings(self.settings)
        client = self.client_factory(limiter)
        try:
            acquisition = DataAcquisition(client, store=self.store, settings=self.settings)
            return await acquisition.run(start=self.start, end=self.end)
        finally:
            close = getattr(client, "close", None)
            if close is not None:
                await close()

    def _series_files(self) -> List[Path]:
        """Asset files named by the manifest, or every persisted asset file."""
        try:
            entries = self.store.read_manifest()
        except CorruptPersistedDataError as e:
            logger.warning(f"Ignoring unreadable manifest: {e}")
            entries = []
        baseline_name = self.store.baseline_path.name
        if entries:
            return [self.store.out_dir / e.filename for e in entries if e.filename != baseline_name]
        return self.store.asset_files()

    def _load(self, path: Path, tolerate_missing: bool) -> Optional[pd.DataFrame]:
        try:
            return read_bars(path)
        except FileNotFoundError as e:
            if tolerate_missing:
                logger.warning(f"Missing {path.name}; skipping this cycle")
                return None
            raise DataError(f"missing series file {path}") from e
        except CorruptPersistedDataError as e:
            logger.error(f"Corrupt series {path.name}: {e}")
            return None

    def compute(self, result: CycleResult, tolerate_missing: bool = False) -> CycleResult:
        """Signals, per-asset performance, execution modes, backtest and reports."""
        baseline = self._load(self.store.baseline_path, tolerate_missing=True)
        if baseline is None:
            logger.warning("No baseline series; relative strength and hedge disabled")

        for path in self._series_files():
            asset = path.stem
            bars = self._load(path, tolerate_missing)
            if bars is None:
                result.skipped_assets.append(asset)
                continue
            records = compute_signals(bars, baseline, self.params)
            if not records:
                logger.info(f"{asset}: insufficient history ({len(bars)} bars)")
            result.signals[asset] = records
            self.reporter.write_signals(asset, records)

        result.performance = performance_by_asset(result.signals)
        result.modes = assign_confidence_modes(result.signals, result.performance, self.policy)
        self.reporter.write_asset_performance(result.performance, result.modes)

        engine = BacktestEngine(self.settings)
        result.backtest = engine.run(result.signals, baseline)
        self.reporter.write_equity_curve(result.backtest)
        self.reporter.write_metrics(result.backtest.metrics)
        for line in self.reporter.generate_summary(result.backtest).splitlines():
            logger.info(line)
        return result

    async def run(self, tolerate_missing: bool = False) -> CycleResult:
        """
        Execute one cycle.

        Args:
            tolerate_missing: Skip assets whose file disappeared (daemon mode)
                instead of failing the cycle.
        """
        result = CycleResult(started_at=datetime.now(UTC))
        if self.fetch:
            result.acquisition = await self.acquire()
        self.compute(result, tolerate_missing=tolerate_missing)
        result.finished_at = datetime.now(UTC)

        if result.acquisition is not None and (
            result.acquisition.failed or result.acquisition.skipped
        ):
            logger.warning(f"Partial success: {result.acquisition.summary()}")
        return result
