"""
Cryptotrend Core Data Models

Pydantic models for upstream payloads (strict schema, fail closed).
Dataclasses for bars, signals, portfolio state and results.
"""

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .enums import ConfidenceMode, ExitReason

UTC = timezone.utc


# =============================================================================
# Upstream payloads
# =============================================================================


class MarketCoin(BaseModel):
    """One entry of the upstream market-cap listing."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(min_length=1)
    symbol: str = Field(min_length=1)
    name: str = ""
    market_cap_rank: Optional[int] = None

    @property
    def ticker(self) -> str:
        return self.symbol.upper()


# [timestamp_ms, open, high, low, close]
RawCandle = Tuple[float, float, float, float, float]
RAW_CANDLES = TypeAdapter(List[RawCandle])
MARKET_COINS = TypeAdapter(List[MarketCoin])


# =============================================================================
# Series
# =============================================================================


@dataclass(frozen=True)
class Bar:
    """One daily price bar. high/low are optional."""

    date: date
    open: float
    close: float
    high: Optional[float] = None
    low: Optional[float] = None

    @property
    def has_range(self) -> bool:
        return self.high is not None and self.low is not None


@dataclass
class ManifestEntry:
    """Manifest line describing one persisted series."""

    symbol: str
    id: str
    filename: str
    last_date: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


# =============================================================================
# Signals
# =============================================================================


@dataclass
class SignalRecord:
    """Daily trend / momentum / relative-strength decision for one asset."""

    date: date
    close: float
    ma_short: float
    ma_long: float
    rs_ma_short: Optional[float]
    rs_ma_long: Optional[float]
    trend: bool
    momentum: bool
    rs_bull: bool
    weight: float
    stop_price: Optional[float]
    position_size: float = 0.0
    confidence_mode: ConfidenceMode = ConfidenceMode.SIGNAL_AT_CLOSE

    @property
    def score(self) -> int:
        """Number of bullish conditions (0-3)."""
        return int(self.trend) + int(self.momentum) + int(self.rs_bull)

    @property
    def risk_per_share(self) -> Optional[float]:
        if self.stop_price is None:
            return None
        return self.close - self.stop_price

    def to_dict(self) -> dict:
        d = asdict(self)
        d["confidence_mode"] = self.confidence_mode.value
        return d


@dataclass
class AssetPerformance:
    """Historical performance of one asset's own signals."""

    asset: str
    trading_days: int = 0
    total_return: float = 0.0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    max_drawdown: float = 0.0
    sharpe_ratio: float = 0.0

    @property
    def has_history(self) -> bool:
        return self.trading_days > 0

    def to_dict(self) -> dict:
        return asdict(self)


# =============================================================================
# Portfolio simulation
# =============================================================================


@dataclass
class PortfolioState:
    """Cash and holdings of the simulated portfolio (negative shares = short)."""

    cash: float
    positions: Dict[str, float] = field(default_factory=dict)
    equity: float = 0.0

    def market_value(self, marks: Dict[str, float]) -> float:
        return sum(shares * marks[asset] for asset, shares in self.positions.items())

    def long_exposure(self, marks: Dict[str, float], assets: Optional[set] = None) -> float:
        """Gross value of long holdings, optionally restricted to `assets`."""
        total = 0.0
        for asset, shares in self.positions.items():
            if shares <= 0:
                continue
            if assets is not None and asset not in assets:
                continue
            total += shares * marks[asset]
        return total


@dataclass
class OpenPosition:
    """A long holding tracked from entry to exit."""

    asset: str
    entry_date: date
    entry_price: float
    shares: float
    stop_price: Optional[float] = None
    realized_pnl: float = 0.0  # from partial reductions while open


@dataclass
class ClosedPosition:
    """A completed round trip; the unit for win rate and profit factor."""

    asset: str
    entry_date: date
    exit_date: date
    entry_price: float
    exit_price: float
    shares: float
    exit_reason: ExitReason
    realized_pnl: float = 0.0

    @property
    def pnl(self) -> float:
        return (self.exit_price - self.entry_price) * self.shares + self.realized_pnl

    @property
    def return_pct(self) -> float:
        if self.entry_price <= 0:
            return 0.0
        return self.exit_price / self.entry_price - 1.0

    @property
    def is_winner(self) -> bool:
        return self.pnl > 0


@dataclass
class EquityPoint:
    """One day of the equity curve."""

    date: date
    equity: float
    daily_return: float
    num_positions: int = 0
    hedge_value: float = 0.0


# =============================================================================
# Locking
# =============================================================================


@dataclass
class LockState:
    """Content of the run lock file."""

    holder_pid: int
    acquired_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(UTC)
        return (now - self.acquired_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "holder_pid": self.holder_pid,
            "acquired_at": self.acquired_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LockState":
        acquired = datetime.fromisoformat(str(data["acquired_at"]).replace("Z", "+00:00"))
        if acquired.tzinfo is None:
            acquired = acquired.replace(tzinfo=UTC)
        return cls(holder_pid=int(data["holder_pid"]), acquired_at=acquired)
