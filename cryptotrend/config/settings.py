"""
Cryptotrend configuration - loaded from environment (CRYPTOTREND_*).
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment."""

    model_config = SettingsConfigDict(
        env_prefix="CRYPTOTREND_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Market data (CoinGecko Pro)
    api_key: str = ""
    api_base_url: str = "https://pro-api.coingecko.com/api/v3"
    vs_currency: str = "usd"
    top_n: int = 100
    baseline_id: str = "bitcoin"
    baseline_symbol: str = "BTC"
    skip_baseline: bool = False

    # Acquisition
    out_dir: str = "./out"
    lookback_days: int = 30
    max_range_days: int = 180
    concurrency: int = 6
    resume: bool = True
    write_manifest: bool = True

    # Rate limiting / retries
    request_delay_ms: int = 250
    request_timeout_seconds: float = 30.0
    max_retries: int = 6
    backoff_base_seconds: float = 0.3
    max_backoff_seconds: float = 60.0

    # Signals
    ma_short: int = 7
    ma_long: int = 30
    stop_lookback: int = 14
    atr_mult: float = 3.0
    vol_mult: float = 2.5

    # Portfolio / backtest
    portfolio_value: float = 100_000.0
    risk_cap_percent: float = 1.0  # % of portfolio risked per position
    max_position_percent: float = 100.0  # % of portfolio per position
    btc_hedge: float = 0.3  # 0.0..1.0 of long exposure, only in baseline bear

    # Execution mode policy (confidence -> pullback allowed)
    pullback_min_confidence: float = 0.7
    policy_sharpe_strong: float = 2.0
    policy_win_rate_strong: float = 0.80
    policy_win_rate_fair: float = 0.60
    policy_drawdown_low: float = 0.05
    policy_drawdown_moderate: float = 0.15
    policy_trading_days_full: int = 15
    policy_trading_days_fair: int = 10
    policy_profit_factor_strong: float = 3.0
    policy_profit_factor_fair: float = 2.0

    # Daemon
    check_interval_minutes: int = 60
    daily_at: Optional[str] = None  # "HH:MM" local time
    lock_file: str = "./out/.cryptotrend.lock"
    lock_stale_seconds: float = 6 * 3600

    # Logging
    log_level: str = "INFO"

    @property
    def signals_dir(self) -> str:
        return f"{self.out_dir.rstrip('/')}/signals"


settings = Settings()


def get_settings() -> Settings:
    """Return application settings (for dependency injection)."""
    return settings
