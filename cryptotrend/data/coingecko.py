"""
CoinGecko Pro Market Data Client

Top-N listing by market cap and daily OHLC history over bounded ranges.
Authenticated via the ``x-cg-pro-api-key`` header.

Every request goes through the shared RateLimiter. HTTP failures are
translated here into the DataError hierarchy so callers never see httpx
exceptions:

    429            -> RateLimitedError (Retry-After honoured)
    404, 400 "coin not found" -> InvalidAssetError
    5xx            -> UpstreamServerError
    timeout/connect -> TransientNetworkError
    bad payload    -> UpstreamParseError
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from cryptotrend.core.exceptions import (
    ConfigurationError,
    DataError,
    InvalidAssetError,
    RateLimitedError,
    TransientNetworkError,
    UpstreamParseError,
    UpstreamServerError,
)
from cryptotrend.core.models import MARKET_COINS, RAW_CANDLES, Bar, MarketCoin

from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

UTC = timezone.utc

# CoinGecko caps /coins/markets pages at 250 entries
MAX_PAGE_SIZE = 250


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After in seconds, or None if absent/unparseable."""
    if not value:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None


def normalize_daily(candles: List[tuple]) -> List[Bar]:
    """
    Bucket raw ``[ts_ms, o, h, l, c]`` candles by UTC date.

    The last candle of each date wins. Output is sorted by date.
    """
    by_date: Dict[date, Bar] = {}
    for ts_ms, o, hi, lo, c in sorted(candles, key=lambda r: r[0]):
        day = datetime.fromtimestamp(ts_ms / 1000.0, tz=UTC).date()
        by_date[day] = Bar(date=day, open=o, close=c, high=hi, low=lo)
    return [by_date[d] for d in sorted(by_date)]


class CoinGeckoClient:
    """
    Async CoinGecko Pro client.

    Usage:
        async with CoinGeckoClient(settings, limiter=limiter) as client:
            coins = await client.list_top(100)
            bars = await client.fetch_range("bitcoin", start, end)
    """

    BASE_URL = "https://pro-api.coingecko.com/api/v3"

    def __init__(
        self,
        settings: Any = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        limiter: Optional[RateLimiter] = None,
    ):
        self.api_key = api_key if api_key is not None else getattr(settings, "api_key", "")
        self.base_url = (base_url or getattr(settings, "api_base_url", self.BASE_URL)).rstrip("/")
        self.vs_currency = getattr(settings, "vs_currency", "usd")
        self.max_range_days = getattr(settings, "max_range_days", 180)
        timeout = getattr(settings, "request_timeout_seconds", 30.0)

        self.limiter = limiter or RateLimiter.from_settings(settings)

        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-cg-pro-api-key"] = self.api_key
        self.client = httpx.AsyncClient(timeout=timeout, headers=headers)

    async def __aenter__(self) -> "CoinGeckoClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Any:
        """Single GET attempt. Raises a DataError subclass on any failure."""
        url = f"{self.base_url}{path}"
        try:
            response = await self.client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"timeout on {path}: {e}") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"connection failure on {path}: {e}") from e

        status = response.status_code
        if status == 429:
            raise RateLimitedError(
                f"rate limited on {path}",
                retry_after=_parse_retry_after(response.headers.get("retry-after")),
            )
        if status == 404:
            raise InvalidAssetError(f"not found: {path}")
        if status == 400 and "coin not found" in (response.text or "").lower():
            raise InvalidAssetError(f"coin not found: {path}")
        if status >= 500:
            raise UpstreamServerError(f"HTTP {status} on {path}", status_code=status)
        if status != 200:
            raise DataError(f"HTTP {status} on {path}: {response.text}")

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamParseError(f"invalid JSON from {path}: {e}") from e

    async def _request(self, path: str, params: Dict[str, Any]) -> Any:
        return await self.limiter.execute(
            lambda: self._get_json(path, params), description=f"GET {path}"
        )

    async def list_top(self, n: int) -> List[MarketCoin]:
        """
        Top ``n`` coins by market cap, ordered by rank.

        Pages through /coins/markets until ``n`` coins are collected or the
        listing runs out.
        """
        if n <= 0:
            return []

        per_page = min(MAX_PAGE_SIZE, n)
        coins: List[MarketCoin] = []
        seen = set()
        page = 1
        while len(coins) < n:
            payload = await self._request(
                "/coins/markets",
                {
                    "vs_currency": self.vs_currency,
                    "order": "market_cap_desc",
                    "per_page": per_page,
                    "page": page,
                    "sparkline": "false",
                },
            )
            try:
                batch = MARKET_COINS.validate_python(payload)
            except ValidationError as e:
                raise UpstreamParseError(f"unexpected /coins/markets payload: {e}") from e

            for coin in batch:
                if coin.id not in seen:
                    seen.add(coin.id)
                    coins.append(coin)

            if len(batch) < per_page:
                break
            page += 1

        coins.sort(key=lambda c: c.market_cap_rank if c.market_cap_rank is not None else 10**9)
        logger.info(f"Listed {min(len(coins), n)} coins by market cap ({page} page(s))")
        return coins[:n]

    async def fetch_range(self, coin_id: str, start: date, end: date) -> List[Bar]:
        """
        Daily bars for ``coin_id`` over the inclusive range [start, end].

        The range must not exceed ``max_range_days``; callers chunk larger
        ranges (see acquisition.chunk_date_range).
        """
        if end < start:
            raise ConfigurationError(f"end {end} is before start {start}")
        span = (end - start).days + 1
        if span > self.max_range_days:
            raise ConfigurationError(
                f"range of {span} days exceeds the {self.max_range_days}-day upstream limit"
            )

        from_ts = int(datetime.combine(start, time.min, tzinfo=UTC).timestamp())
        to_ts = int(datetime.combine(end + timedelta(days=1), time.min, tzinfo=UTC).timestamp()) - 1

        payload = await self._request(
            f"/coins/{coin_id}/ohlc/range",
            {
                "vs_currency": self.vs_currency,
                "from": from_ts,
                "to": to_ts,
                "interval": "daily",
            },
        )
        try:
            candles = RAW_CANDLES.validate_python(payload)
        except ValidationError as e:
            raise UpstreamParseError(f"unexpected OHLC payload for {coin_id}: {e}") from e

        try:
            daily = normalize_daily(candles)
        except (OverflowError, OSError, ValueError) as e:
            raise UpstreamParseError(f"out-of-range candle timestamp for {coin_id}: {e}") from e
        bars = [b for b in daily if start <= b.date <= end]
        logger.debug(f"{coin_id}: {len(bars)} bars for {start}..{end}")
        return bars
