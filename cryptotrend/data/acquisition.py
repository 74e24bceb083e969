"""
Market data acquisition: produce or refresh one persisted series per asset.

- Baseline (bitcoin -> BTC.csv) is refreshed first, then the top-N assets
  in parallel, bounded by ``concurrency``.
- Chunk requests within one asset are strictly sequential; every request
  from every worker goes through the client's shared RateLimiter.
- Resume: only dates after the persisted last date are fetched. The merge
  dedupes by date so re-running over the same window changes nothing.
- One asset failing never aborts the run; the outcome is recorded in the
  AcquisitionReport.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, List, Optional, Tuple

from cryptotrend.core.enums import FetchStatus
from cryptotrend.core.exceptions import (
    ConfigurationError,
    CorruptPersistedDataError,
    DataError,
    InvalidAssetError,
)
from cryptotrend.core.models import ManifestEntry

from .store import BarStore, bars_to_frame

logger = logging.getLogger(__name__)

UTC = timezone.utc


def chunk_date_range(start: date, end: date, max_days: int) -> List[Tuple[date, date]]:
    """
    Split inclusive [start, end] into contiguous, non-overlapping chunks of at
    most ``max_days`` days each.

    Example:
        chunk_date_range(date(2024, 1, 1), date(2024, 1, 10), 4)
        -> [(01-01, 01-04), (01-05, 01-08), (01-09, 01-10)]
    """
    if max_days < 1:
        raise ValueError(f"max_days must be >= 1, got {max_days}")
    chunks = []
    cursor = start
    while cursor <= end:
        chunk_end = min(cursor + timedelta(days=max_days - 1), end)
        chunks.append((cursor, chunk_end))
        cursor = chunk_end + timedelta(days=1)
    return chunks


def default_window(today: Optional[date] = None, lookback_days: int = 30) -> Tuple[date, date]:
    """(start, end) with end = yesterday (UTC) and start = end - lookback_days."""
    today = today or datetime.now(UTC).date()
    end = today - timedelta(days=1)
    return end - timedelta(days=max(lookback_days, 1)), end


@dataclass
class AssetTarget:
    """One series to refresh."""

    symbol: str
    coin_id: str
    path: Path
    is_baseline: bool = False


@dataclass
class AssetResult:
    """Outcome of refreshing one asset."""

    symbol: str
    coin_id: str
    status: FetchStatus
    path: Path
    bars_added: int = 0
    last_date: Optional[date] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (FetchStatus.UPDATED, FetchStatus.UP_TO_DATE)


@dataclass
class AcquisitionReport:
    """Per-asset outcomes of one acquisition run."""

    start: date
    end: date
    results: List[AssetResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: Optional[datetime] = None

    def _with(self, *statuses: FetchStatus) -> List[AssetResult]:
        return [r for r in self.results if r.status in statuses]

    @property
    def updated(self) -> List[AssetResult]:
        return self._with(FetchStatus.UPDATED)

    @property
    def up_to_date(self) -> List[AssetResult]:
        return self._with(FetchStatus.UP_TO_DATE)

    @property
    def succeeded(self) -> List[AssetResult]:
        return self._with(FetchStatus.UPDATED, FetchStatus.UP_TO_DATE)

    @property
    def skipped(self) -> List[AssetResult]:
        return self._with(FetchStatus.SKIPPED)

    @property
    def failed(self) -> List[AssetResult]:
        return self._with(FetchStatus.FAILED)

    @property
    def exit_code(self) -> int:
        """0 on full or partial success, 1 when no asset succeeded."""
        return 0 if self.succeeded else 1

    def summary(self) -> str:
        return (
            f"{len(self.updated)} updated, {len(self.up_to_date)} up to date, "
            f"{len(self.skipped)} skipped, {len(self.failed)} failed"
        )


class DataAcquisition:
    """
    Refreshes persisted series from the upstream client.

    ``client`` needs ``list_top(n)`` and ``fetch_range(id, start, end)``
    (see CoinGeckoClient).
    """

    def __init__(
        self,
        client: Any,
        store: Optional[BarStore] = None,
        settings: Any = None,
        concurrency: Optional[int] = None,
        resume: Optional[bool] = None,
        max_range_days: Optional[int] = None,
    ):
        self.client = client
        self.settings = settings
        self.store = store or BarStore(getattr(settings, "out_dir", "./out"))
        self.concurrency = concurrency if concurrency is not None else getattr(settings, "concurrency", 6)
        self.resume = resume if resume is not None else getattr(settings, "resume", True)
        self.max_range_days = max_range_days or getattr(settings, "max_range_days", 180)
        self.top_n = getattr(settings, "top_n", 100)
        self.baseline_id = getattr(settings, "baseline_id", "bitcoin")
        self.baseline_symbol = getattr(settings, "baseline_symbol", "BTC")
        self.skip_baseline = getattr(settings, "skip_baseline", False)
        self.write_manifest = getattr(settings, "write_manifest", True)

        if self.concurrency < 1:
            raise ConfigurationError(f"concurrency must be >= 1, got {self.concurrency}")

    async def resolve_targets(self) -> List[AssetTarget]:
        """Baseline first (unless skipped), then top-N without the baseline."""
        targets: List[AssetTarget] = []
        if not self.skip_baseline:
            targets.append(
                AssetTarget(
                    symbol=self.baseline_symbol.upper(),
                    coin_id=self.baseline_id,
                    path=self.store.baseline_path,
                    is_baseline=True,
                )
            )

        try:
            coins = await self.client.list_top(self.top_n)
        except DataError as e:
            logger.error(f"Could not list top {self.top_n} coins: {e}")
            return targets

        for coin in coins:
            if coin.id == self.baseline_id:
                continue
            targets.append(
                AssetTarget(
                    symbol=coin.ticker,
                    coin_id=coin.id,
                    path=self.store.path_for(coin.ticker, coin.id),
                )
            )
        return targets

    async def refresh_asset(self, target: AssetTarget, start: date, end: date) -> AssetResult:
        """Fetch what is missing for one asset and merge it into its file."""
        label = f"{target.symbol} ({target.coin_id})"
        try:
            cursor = self.store.last_date(target.path) if self.resume else None
            fetch_start = cursor + timedelta(days=1) if cursor else start
            if fetch_start > end:
                logger.info(f"{label} up to date through {cursor}; skipping")
                return AssetResult(
                    target.symbol, target.coin_id, FetchStatus.UP_TO_DATE, target.path,
                    last_date=cursor,
                )

            bars = []
            for chunk_start, chunk_end in chunk_date_range(fetch_start, end, self.max_range_days):
                bars.extend(await self.client.fetch_range(target.coin_id, chunk_start, chunk_end))

            new = bars_to_frame(bars)
            if new.empty:
                logger.info(f"{label}: no new rows for {fetch_start}..{end}")
                return AssetResult(
                    target.symbol, target.coin_id, FetchStatus.UP_TO_DATE, target.path,
                    last_date=cursor,
                )

            merged, added = self.store.merge_and_write(target.path, new)
            return AssetResult(
                target.symbol,
                target.coin_id,
                FetchStatus.UPDATED,
                target.path,
                bars_added=added,
                last_date=merged.index[-1].date(),
            )

        except (InvalidAssetError, CorruptPersistedDataError) as e:
            logger.warning(f"Skipping {label}: {e}")
            return AssetResult(
                target.symbol, target.coin_id, FetchStatus.SKIPPED, target.path, error=str(e)
            )
        except (DataError, OSError) as e:
            logger.error(f"Failed {label}: {e}")
            return AssetResult(
                target.symbol, target.coin_id, FetchStatus.FAILED, target.path, error=str(e)
            )

    async def run(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        targets: Optional[List[AssetTarget]] = None,
    ) -> AcquisitionReport:
        """
        Refresh all targets over [start, end].

        Args:
            start: First date (default: end - lookback_days).
            end: Last date (default: yesterday UTC).
            targets: Explicit targets (default: baseline + top-N).

        Returns:
            AcquisitionReport with one result per target.
        """
        lookback = getattr(self.settings, "lookback_days", 30)
        if end is None:
            end = default_window(lookback_days=lookback)[1]
        if start is None:
            start = end - timedelta(days=max(lookback, 1))
        if end < start:
            raise ConfigurationError(f"end {end} is before start {start}")

        report = AcquisitionReport(start=start, end=end)
        logger.info(f"Acquisition {start}..{end} (resume={self.resume}, concurrency={self.concurrency})")

        if targets is None:
            targets = await self.resolve_targets()

        baseline = [t for t in targets if t.is_baseline]
        others = [t for t in targets if not t.is_baseline]

        for target in baseline:
            report.results.append(await self.refresh_asset(target, start, end))

        semaphore = asyncio.Semaphore(self.concurrency)

        async def worker(target: AssetTarget) -> AssetResult:
            async with semaphore:
                return await self.refresh_asset(target, start, end)

        report.results.extend(await asyncio.gather(*(worker(t) for t in others)))

        if self.write_manifest:
            self.store.write_manifest(self.manifest_entries(targets))

        report.finished_at = datetime.now(UTC)
        level = logging.INFO if not (report.failed or report.skipped) else logging.WARNING
        logger.log(level, f"Acquisition complete: {report.summary()}")
        return report

    def manifest_entries(self, targets: List[AssetTarget]) -> List[ManifestEntry]:
        """One entry per target whose series exists and parses."""
        entries = []
        for target in targets:
            if not target.path.exists():
                continue
            try:
                last = self.store.last_date(target.path)
            except CorruptPersistedDataError:
                continue
            entries.append(
                ManifestEntry(
                    symbol=target.symbol,
                    id=target.coin_id,
                    filename=target.path.name,
                    last_date=last.isoformat() if last else None,
                )
            )
        return entries
