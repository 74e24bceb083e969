"""Cryptotrend market data: upstream client, rate limiting, persisted series."""

from .rate_limiter import RateLimiter
from .coingecko import CoinGeckoClient, normalize_daily
from .store import (
    BarStore,
    bars_to_frame,
    frame_to_bars,
    merge_bars,
    read_bars,
    write_bars,
    atomic_write_text,
)
from .acquisition import (
    DataAcquisition,
    AcquisitionReport,
    AssetResult,
    AssetTarget,
    chunk_date_range,
    default_window,
)

__all__ = [
    "RateLimiter",
    "CoinGeckoClient",
    "normalize_daily",
    "BarStore",
    "bars_to_frame",
    "frame_to_bars",
    "merge_bars",
    "read_bars",
    "write_bars",
    "atomic_write_text",
    "DataAcquisition",
    "AcquisitionReport",
    "AssetResult",
    "AssetTarget",
    "chunk_date_range",
    "default_window",
]
