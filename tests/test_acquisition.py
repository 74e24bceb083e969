"""Tests for market data acquisition."""

import asyncio
from datetime import date, timedelta
from types import SimpleNamespace

import pytest

from cryptotrend.core.enums import FetchStatus
from cryptotrend.core.exceptions import (
    ConfigurationError,
    InvalidAssetError,
    TransientNetworkError,
)
from cryptotrend.core.models import Bar, MarketCoin
from cryptotrend.data.acquisition import (
    AcquisitionReport,
    AssetResult,
    AssetTarget,
    DataAcquisition,
    chunk_date_range,
    default_window,
)
from cryptotrend.data.store import BarStore


class FakeClient:
    """Deterministic upstream: one bar per requested day, close = ordinal % 1000."""

    def __init__(self, coins=None, fail=None, invalid=None):
        self.coins = coins or []
        self.fail = set(fail or [])
        self.invalid = set(invalid or [])
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def list_top(self, n):
        return self.coins[:n]

    async def fetch_range(self, coin_id, start, end):
        self.calls.append((coin_id, start, end))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0)
            if coin_id in self.invalid:
                raise InvalidAssetError(f"unknown {coin_id}")
            if coin_id in self.fail:
                raise TransientNetworkError("gave up")
            bars = []
            d = start
            while d <= end:
                c = float(d.toordinal() % 1000) + 1.0
                bars.append(Bar(date=d, open=c, close=c, high=c + 1, low=c - 1))
                d += timedelta(days=1)
            return bars
        finally:
            self.active -= 1


def coins(*ids):
    return [
        MarketCoin(id=cid, symbol=cid[:3], name=cid, market_cap_rank=i + 1)
        for i, cid in enumerate(ids)
    ]


def settings(out_dir, **overrides):
    values = dict(
        out_dir=str(out_dir),
        top_n=10,
        concurrency=2,
        resume=True,
        max_range_days=180,
        baseline_id="bitcoin",
        baseline_symbol="BTC",
        skip_baseline=False,
        write_manifest=True,
        lookback_days=30,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


D0 = date(2024, 1, 1)


# =============================================================================
# Helpers
# =============================================================================


class TestChunkDateRange:

    def test_contiguous_and_bounded(self):
        chunks = chunk_date_range(D0, date(2024, 1, 10), 4)
        assert chunks == [
            (date(2024, 1, 1), date(2024, 1, 4)),
            (date(2024, 1, 5), date(2024, 1, 8)),
            (date(2024, 1, 9), date(2024, 1, 10)),
        ]

    def test_single_day(self):
        assert chunk_date_range(D0, D0, 180) == [(D0, D0)]

    def test_empty_when_inverted(self):
        assert chunk_date_range(date(2024, 1, 2), D0, 10) == []

    def test_long_range_covers_every_day_once(self):
        end = date(2024, 12, 31)
        chunks = chunk_date_range(D0, end, 180)
        assert chunks[0][0] == D0
        assert chunks[-1][1] == end
        for (_, prev_end), (next_start, _) in zip(chunks, chunks[1:]):
            assert next_start == prev_end + timedelta(days=1)
        assert all((e - s).days + 1 <= 180 for s, e in chunks)

    def test_rejects_zero(self):
        with pytest.raises(ValueError):
            chunk_date_range(D0, D0, 0)


class TestDefaultWindow:

    def test_ends_yesterday(self):
        start, end = default_window(today=date(2024, 3, 10), lookback_days=30)
        assert end == date(2024, 3, 9)
        assert start == date(2024, 2, 8)


class TestReport:

    def test_exit_code_partial_success(self):
        report = AcquisitionReport(start=D0, end=D0)
        report.results = [
            AssetResult("A", "a", FetchStatus.UPDATED, path=None),
            AssetResult("B", "b", FetchStatus.FAILED, path=None),
        ]
        assert report.exit_code == 0
        assert "1 updated" in report.summary()
        assert "1 failed" in report.summary()

    def test_exit_code_nothing_succeeded(self):
        report = AcquisitionReport(start=D0, end=D0)
        report.results = [AssetResult("B", "b", FetchStatus.SKIPPED, path=None)]
        assert report.exit_code == 1


# =============================================================================
# DataAcquisition
# =============================================================================


class TestResolveTargets:

    @pytest.mark.asyncio
    async def test_baseline_first_and_excluded_from_assets(self, tmp_path):
        client = FakeClient(coins=coins("bitcoin", "ethereum", "solana"))
        acq = DataAcquisition(client, settings=settings(tmp_path))
        targets = await acq.resolve_targets()

        assert [t.coin_id for t in targets] == ["bitcoin", "ethereum", "solana"]
        assert targets[0].is_baseline
        assert targets[0].path.name == "BTC.csv"
        assert targets[1].path.name == "ETH_ethereum.csv"

    @pytest.mark.asyncio
    async def test_listing_failure_keeps_baseline(self, tmp_path):
        client = FakeClient()

        async def broken(n):
            raise TransientNetworkError("down")

        client.list_top = broken
        acq = DataAcquisition(client, settings=settings(tmp_path))
        targets = await acq.resolve_targets()
        assert [t.coin_id for t in targets] == ["bitcoin"]


class TestRefresh:

    @pytest.mark.asyncio
    async def test_chunks_fetched_sequentially(self, tmp_path):
        client = FakeClient()
        acq = DataAcquisition(client, settings=settings(tmp_path, max_range_days=10))
        target = AssetTarget("ETH", "ethereum", tmp_path / "ETH_ethereum.csv")

        result = await acq.refresh_asset(target, D0, date(2024, 1, 25))

        assert result.status == FetchStatus.UPDATED
        assert result.bars_added == 25
        assert result.last_date == date(2024, 1, 25)
        assert [c[1:] for c in client.calls] == [
            (date(2024, 1, 1), date(2024, 1, 10)),
            (date(2024, 1, 11), date(2024, 1, 20)),
            (date(2024, 1, 21), date(2024, 1, 25)),
        ]

    @pytest.mark.asyncio
    async def test_resume_fetches_only_missing_tail(self, tmp_path):
        client = FakeClient()
        acq = DataAcquisition(client, settings=settings(tmp_path))
        target = AssetTarget("ETH", "ethereum", tmp_path / "ETH_ethereum.csv")

        await acq.refresh_asset(target, D0, date(2024, 1, 10))
        client.calls.clear()
        result = await acq.refresh_asset(target, D0, date(2024, 1, 15))

        assert client.calls == [("ethereum", date(2024, 1, 11), date(2024, 1, 15))]
        assert result.bars_added == 5

    @pytest.mark.asyncio
    async def test_up_to_date_makes_no_request(self, tmp_path):
        client = FakeClient()
        acq = DataAcquisition(client, settings=settings(tmp_path))
        target = AssetTarget("ETH", "ethereum", tmp_path / "ETH_ethereum.csv")

        await acq.refresh_asset(target, D0, date(2024, 1, 10))
        client.calls.clear()
        result = await acq.refresh_asset(target, D0, date(2024, 1, 10))

        assert result.status == FetchStatus.UP_TO_DATE
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_no_resume_refetches_window(self, tmp_path):
        client = FakeClient()
        acq = DataAcquisition(client, settings=settings(tmp_path, resume=False))
        target = AssetTarget("ETH", "ethereum", tmp_path / "ETH_ethereum.csv")

        await acq.refresh_asset(target, D0, date(2024, 1, 10))
        client.calls.clear()
        result = await acq.refresh_asset(target, D0, date(2024, 1, 10))

        assert client.calls == [("ethereum", D0, date(2024, 1, 10))]
        assert result.status == FetchStatus.UPDATED
        assert result.bars_added == 0

    @pytest.mark.asyncio
    async def test_invalid_asset_skipped(self, tmp_path):
        client = FakeClient(invalid=["ghost"])
        acq = DataAcquisition(client, settings=settings(tmp_path))
        result = await acq.refresh_asset(
            AssetTarget("GHO", "ghost", tmp_path / "GHO_ghost.csv"), D0, D0
        )
        assert result.status == FetchStatus.SKIPPED
        assert not (tmp_path / "GHO_ghost.csv").exists()

    @pytest.mark.asyncio
    async def test_corrupt_file_skipped(self, tmp_path):
        path = tmp_path / "ETH_ethereum.csv"
        path.write_text("date,open\ngarbage\n")
        acq = DataAcquisition(FakeClient(), settings=settings(tmp_path))
        result = await acq.refresh_asset(AssetTarget("ETH", "ethereum", path), D0, D0)
        assert result.status == FetchStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_network_failure_failed(self, tmp_path):
        client = FakeClient(fail=["ethereum"])
        acq = DataAcquisition(client, settings=settings(tmp_path))
        result = await acq.refresh_asset(
            AssetTarget("ETH", "ethereum", tmp_path / "ETH_ethereum.csv"), D0, D0
        )
        assert result.status == FetchStatus.FAILED
        assert "gave up" in result.error


class TestRun:

    @pytest.mark.asyncio
    async def test_resume_is_idempotent(self, tmp_path):
        d1, d2 = date(2024, 1, 20), date(2024, 2, 10)

        incremental = tmp_path / "incremental"
        acq = DataAcquisition(FakeClient(coins=coins("ethereum")), settings=settings(incremental))
        await acq.run(start=D0, end=d1)
        await acq.run(start=D0, end=d2)

        direct = tmp_path / "direct"
        acq = DataAcquisition(FakeClient(coins=coins("ethereum")), settings=settings(direct))
        await acq.run(start=D0, end=d2)

        for name in ("BTC.csv", "ETH_ethereum.csv"):
            assert (incremental / name).read_text() == (direct / name).read_text()

        # A further rerun over the same window changes nothing
        before = (incremental / "ETH_ethereum.csv").read_text()
        acq = DataAcquisition(FakeClient(coins=coins("ethereum")), settings=settings(incremental))
        await acq.run(start=D0, end=d2)
        assert (incremental / "ETH_ethereum.csv").read_text() == before

    @pytest.mark.asyncio
    async def test_concurrency_bound(self, tmp_path):
        client = FakeClient(coins=coins("a1", "a2", "a3", "a4", "a5", "a6"))
        acq = DataAcquisition(client, settings=settings(tmp_path, concurrency=2))
        await acq.run(start=D0, end=date(2024, 1, 5))
        assert client.max_active <= 2

    @pytest.mark.asyncio
    async def test_failure_isolated(self, tmp_path):
        client = FakeClient(coins=coins("ethereum", "broken", "ghost"), fail=["broken"], invalid=["ghost"])
        acq = DataAcquisition(client, settings=settings(tmp_path))
        report = await acq.run(start=D0, end=date(2024, 1, 5))

        statuses = {r.coin_id: r.status for r in report.results}
        assert statuses == {
            "bitcoin": FetchStatus.UPDATED,
            "ethereum": FetchStatus.UPDATED,
            "broken": FetchStatus.FAILED,
            "ghost": FetchStatus.SKIPPED,
        }
        assert report.exit_code == 0

    @pytest.mark.asyncio
    async def test_all_failed_exit_code(self, tmp_path):
        client = FakeClient(fail=["bitcoin"])
        acq = DataAcquisition(client, settings=settings(tmp_path))
        report = await acq.run(start=D0, end=D0)
        assert report.exit_code == 1

    @pytest.mark.asyncio
    async def test_manifest_lists_persisted_series(self, tmp_path):
        client = FakeClient(coins=coins("ethereum", "broken"), fail=["broken"])
        acq = DataAcquisition(client, settings=settings(tmp_path))
        await acq.run(start=D0, end=date(2024, 1, 5))

        entries = BarStore(tmp_path).read_manifest()
        assert [(e.symbol, e.id, e.filename, e.last_date) for e in entries] == [
            ("BTC", "bitcoin", "BTC.csv", "2024-01-05"),
            ("ETH", "ethereum", "ETH_ethereum.csv", "2024-01-05"),
        ]

    @pytest.mark.asyncio
    async def test_skip_baseline(self, tmp_path):
        client = FakeClient(coins=coins("ethereum"))
        acq = DataAcquisition(client, settings=settings(tmp_path, skip_baseline=True))
        report = await acq.run(start=D0, end=D0)
        assert [r.coin_id for r in report.results] == ["ethereum"]

    @pytest.mark.asyncio
    async def test_inverted_window_rejected(self, tmp_path):
        acq = DataAcquisition(FakeClient(), settings=settings(tmp_path))
        with pytest.raises(ConfigurationError):
            await acq.run(start=date(2024, 1, 5), end=D0)

    def test_rejects_zero_concurrency(self, tmp_path):
        with pytest.raises(ConfigurationError):
            DataAcquisition(FakeClient(), settings=settings(tmp_path), concurrency=0)
