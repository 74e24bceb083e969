"""End-to-end tests for one trading cycle over a fake upstream."""

from datetime import date, timedelta

import pandas as pd
import pytest

from cryptotrend.config.settings import Settings
from cryptotrend.core.enums import FetchStatus
from cryptotrend.core.exceptions import DataError, TransientNetworkError
from cryptotrend.core.models import Bar, MarketCoin
from cryptotrend.pipeline.cycle import TradingCycle

START = date(2024, 1, 1)
END = date(2024, 2, 29)


class FakeCoinGecko:
    """Flat bitcoin, rising ethereum, falling solana."""

    PRICES = {
        "bitcoin": lambda i: 100.0,
        "ethereum": lambda i: 100.0 + i,
        "solana": lambda i: 200.0 - i,
    }

    def __init__(self, limiter=None, fail=()):
        self.limiter = limiter
        self.fail = set(fail)
        self.closed = False

    async def list_top(self, n):
        return [
            MarketCoin(id="bitcoin", symbol="btc", market_cap_rank=1),
            MarketCoin(id="ethereum", symbol="eth", market_cap_rank=2),
            MarketCoin(id="solana", symbol="sol", market_cap_rank=3),
        ][:n]

    async def fetch_range(self, coin_id, start, end):
        if coin_id in self.fail:
            raise TransientNetworkError("retries exhausted")
        price = self.PRICES[coin_id]
        bars = []
        d = start
        while d <= end:
            c = price((d - START).days)
            bars.append(Bar(date=d, open=c, close=c, high=c + 1, low=c - 1))
            d += timedelta(days=1)
        return bars

    async def close(self):
        self.closed = True


@pytest.fixture
def settings(tmp_path):
    return Settings(
        out_dir=str(tmp_path),
        top_n=3,
        concurrency=2,
        request_delay_ms=0,
        btc_hedge=0.3,
        lookback_days=60,
    )


def make_cycle(settings, fetch=True, fail=()):
    clients = []

    def factory(limiter):
        client = FakeCoinGecko(limiter, fail=fail)
        clients.append(client)
        return client

    cycle = TradingCycle(settings, client_factory=factory, fetch=fetch, start=START, end=END)
    return cycle, clients


class TestFullCycle:

    @pytest.mark.asyncio
    async def test_writes_every_artifact(self, settings, tmp_path):
        cycle, clients = make_cycle(settings)
        result = await cycle.run()

        assert result.exit_code == 0
        assert clients[0].closed
        assert clients[0].limiter is not None
        for name in (
            "BTC.csv",
            "ETH_ethereum.csv",
            "SOL_solana.csv",
            "manifest.json",
            "equity_curve.csv",
            "metrics.txt",
            "asset_performance.csv",
            "signals/signals_ETH_ethereum.csv",
            "signals/signals_SOL_solana.csv",
        ):
            assert (tmp_path / name).exists(), name

    @pytest.mark.asyncio
    async def test_signals_and_backtest(self, settings, tmp_path):
        cycle, _ = make_cycle(settings)
        result = await cycle.run()

        assert set(result.signals) == {"ETH_ethereum", "SOL_solana"}
        eth = result.signals["ETH_ethereum"]
        assert eth[-1].date == END
        assert all(r.weight == 1.0 for r in eth)
        assert all(r.weight == 0.0 for r in result.signals["SOL_solana"])

        assert result.backtest.equity_curve
        assert result.backtest.final_equity > settings.portfolio_value
        assert set(result.modes) == {"ETH_ethereum", "SOL_solana"}

        equity = pd.read_csv(tmp_path / "equity_curve.csv")
        assert len(equity) == len(result.backtest.equity_curve)
        metrics = (tmp_path / "metrics.txt").read_text()
        assert metrics.startswith("CAGR: ")

    @pytest.mark.asyncio
    async def test_partial_success(self, settings, tmp_path):
        cycle, _ = make_cycle(settings, fail=["solana"])
        result = await cycle.run()

        assert result.exit_code == 0
        statuses = {r.coin_id: r.status for r in result.acquisition.results}
        assert statuses["solana"] == FetchStatus.FAILED
        assert set(result.signals) == {"ETH_ethereum"}

    @pytest.mark.asyncio
    async def test_nothing_succeeded(self, settings):
        cycle, _ = make_cycle(settings, fail=["bitcoin", "ethereum", "solana"])
        result = await cycle.run()
        assert result.exit_code == 1
        assert result.signals == {}


class TestComputeOnly:

    @pytest.mark.asyncio
    async def test_recompute_from_persisted(self, settings):
        first, _ = make_cycle(settings)
        await first.run()

        cycle, clients = make_cycle(settings, fetch=False)
        result = await cycle.run()

        assert clients == []
        assert result.acquisition is None
        assert result.exit_code == 0
        assert set(result.signals) == {"ETH_ethereum", "SOL_solana"}

    @pytest.mark.asyncio
    async def test_no_data(self, settings):
        cycle, _ = make_cycle(settings, fetch=False)
        result = await cycle.run()
        assert result.exit_code == 1
        assert result.backtest.equity_curve == []

    @pytest.mark.asyncio
    async def test_missing_file_is_error_in_one_shot(self, settings, tmp_path):
        first, _ = make_cycle(settings)
        await first.run()
        (tmp_path / "SOL_solana.csv").unlink()

        cycle, _ = make_cycle(settings, fetch=False)
        with pytest.raises(DataError):
            await cycle.run(tolerate_missing=False)

    @pytest.mark.asyncio
    async def test_missing_file_tolerated_in_daemon(self, settings, tmp_path):
        first, _ = make_cycle(settings)
        await first.run()
        (tmp_path / "SOL_solana.csv").unlink()

        cycle, _ = make_cycle(settings, fetch=False)
        result = await cycle.run(tolerate_missing=True)

        assert result.skipped_assets == ["SOL_solana"]
        assert set(result.signals) == {"ETH_ethereum"}

    @pytest.mark.asyncio
    async def test_corrupt_file_skipped(self, settings, tmp_path):
        first, _ = make_cycle(settings)
        await first.run()
        (tmp_path / "SOL_solana.csv").write_text("not,a,series\n")

        cycle, _ = make_cycle(settings, fetch=False)
        result = await cycle.run()

        assert "SOL_solana" in result.skipped_assets
        assert "ETH_ethereum" in result.signals

    @pytest.mark.asyncio
    async def test_unreadable_manifest_falls_back_to_files(self, settings, tmp_path):
        first, _ = make_cycle(settings)
        await first.run()
        (tmp_path / "manifest.json").write_text("{broken")

        cycle, _ = make_cycle(settings, fetch=False)
        result = await cycle.run()
        assert set(result.signals) == {"ETH_ethereum", "SOL_solana"}

    @pytest.mark.asyncio
    async def test_without_manifest_reports_are_not_series(self, settings, tmp_path):
        settings = settings.model_copy(update={"write_manifest": False})
        first, _ = make_cycle(settings)
        await first.run()
        assert not (tmp_path / "manifest.json").exists()
        assert (tmp_path / "equity_curve.csv").exists()

        cycle, _ = make_cycle(settings, fetch=False)
        result = await cycle.run()

        assert result.skipped_assets == []
        assert set(result.signals) == {"ETH_ethereum", "SOL_solana"}
