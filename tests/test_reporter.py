"""Tests for the backtest reporter output files."""

import math
from datetime import date

import pandas as pd
import pytest

from cryptotrend.backtest.engine import BacktestResult
from cryptotrend.backtest.reporter import SIGNAL_COLUMNS, BacktestReporter
from cryptotrend.backtest.statistics import PortfolioMetrics
from cryptotrend.core.enums import ConfidenceMode
from cryptotrend.core.models import AssetPerformance, EquityPoint, SignalRecord
from cryptotrend.signals.execution_mode import ExecutionMode


@pytest.fixture
def reporter(tmp_path):
    return BacktestReporter(tmp_path)


def metrics(**kwargs):
    values = dict(
        cagr=0.12,
        sharpe_ratio=1.8,
        max_drawdown=0.07,
        win_rate=0.6,
        profit_factor=2.5,
        trading_days=30,
        total_return=0.01,
        closed_positions=5,
    )
    values.update(kwargs)
    return PortfolioMetrics(**values)


class TestSignalCsv:

    def test_exact_header_and_formatting(self, reporter, tmp_path):
        records = [
            SignalRecord(
                date=date(2024, 2, 1),
                close=105.0,
                ma_short=104.5,
                ma_long=100.0,
                rs_ma_short=None,
                rs_ma_long=None,
                trend=True,
                momentum=True,
                rs_bull=False,
                weight=0.0,
                stop_price=99.0,
                position_size=0.0,
            )
        ]
        path = reporter.write_signals("ETH_ethereum", records)

        assert path == tmp_path / "signals" / "signals_ETH_ethereum.csv"
        lines = path.read_text().splitlines()
        assert lines[0] == ",".join(SIGNAL_COLUMNS)
        assert lines[0] == (
            "date,ma_short,ma_long,rs_ma_short,rs_ma_long,trend,momentum,rs_bull,"
            "weight,stop_price,position_size"
        )
        assert lines[1] == (
            "2024-02-01,104.50000000,100.00000000,,,true,true,false,"
            "0.00,99.00000000,0.00000000"
        )

    def test_empty_records_header_only(self, reporter):
        path = reporter.write_signals("X_x", [])
        assert path.read_text().splitlines() == [",".join(SIGNAL_COLUMNS)]

    def test_custom_signals_dir(self, tmp_path):
        reporter = BacktestReporter(tmp_path, signals_dir=tmp_path / "elsewhere")
        assert reporter.signals_path("A_a") == tmp_path / "elsewhere" / "signals_A_a.csv"


class TestEquityAndMetrics:

    def test_equity_curve(self, reporter):
        result = BacktestResult(
            starting_equity=100.0,
            equity_curve=[
                EquityPoint(date=date(2024, 1, 1), equity=100.0, daily_return=0.0),
                EquityPoint(date=date(2024, 1, 2), equity=101.0, daily_return=0.01),
            ],
        )
        path = reporter.write_equity_curve(result)
        df = pd.read_csv(path)
        assert list(df.columns) == ["date", "equity", "daily_return"]
        assert df["date"].tolist() == ["2024-01-01", "2024-01-02"]
        assert df["daily_return"].iloc[1] == pytest.approx(0.01)

    def test_metrics_key_value_lines(self, reporter):
        path = reporter.write_metrics(metrics(profit_factor=math.inf))
        lines = path.read_text().splitlines()
        keys = [line.split(": ")[0] for line in lines]
        assert keys[:6] == ["CAGR", "Sharpe", "MaxDrawdown", "WinRate", "ProfitFactor", "TradingDays"]
        assert "ProfitFactor: inf" in lines
        assert "TradingDays: 30" in lines

    def test_summary(self, reporter):
        result = BacktestResult(
            starting_equity=100.0,
            equity_curve=[EquityPoint(date=date(2024, 1, 1), equity=101.0, daily_return=0.0)],
            metrics=metrics(),
        )
        summary = reporter.generate_summary(result)
        assert "CRYPTOTREND BACKTEST SUMMARY" in summary
        assert "Sharpe" in summary
        assert "2024-01-01" in summary


class TestAssetPerformanceCsv:

    def test_rows_with_modes(self, reporter):
        performance = {
            "SOL_solana": AssetPerformance(asset="SOL_solana"),
            "ETH_ethereum": AssetPerformance(
                asset="ETH_ethereum",
                trading_days=20,
                total_return=0.3,
                win_rate=0.85,
                profit_factor=math.inf,
                max_drawdown=0.02,
                sharpe_ratio=3.0,
            ),
        }
        modes = {
            "ETH_ethereum": ExecutionMode(ConfidenceMode.PULLBACK_TO_MA, 1.0, 0.15, 72),
            "SOL_solana": ExecutionMode(ConfidenceMode.SIGNAL_AT_CLOSE, 0.0, 0.05, 24),
        }
        path = reporter.write_asset_performance(performance, modes)
        df = pd.read_csv(path, dtype=str, keep_default_na=False)

        assert df["asset"].tolist() == ["ETH_ethereum", "SOL_solana"]
        eth = df.iloc[0]
        assert eth["confidence_mode"] == "pullback_to_ma"
        assert eth["profit_factor"] == "inf"
        assert eth["limit_order_hours"] == "72"
        assert df.iloc[1]["confidence_mode"] == "signal_at_close"
