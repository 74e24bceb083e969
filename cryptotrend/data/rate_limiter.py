"""
Shared request gate for all outbound market-data calls.

One instance is created per acquisition run and passed to every worker.
It enforces a minimum spacing between dispatched requests (a single token
source, not per worker) and owns the retry policy:

- 429 (RateLimitedError): wait Retry-After if given, else exponential backoff
- 5xx / timeouts / connection errors: exponential backoff
- anything else (invalid asset, parse errors): propagate immediately

Requests are delayed, never dropped, up to ``max_retries`` retries.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from cryptotrend.core.exceptions import (
    RateLimitedError,
    TransientNetworkError,
    UpstreamServerError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default config (overridable via settings or constructor)
MIN_INTERVAL_SECONDS = 0.25
MAX_RETRIES = 6
BACKOFF_BASE_SECONDS = 0.3
MAX_BACKOFF_SECONDS = 60.0


class RateLimiter:
    """Minimum-spacing gate plus retry/backoff policy, safe to share across tasks."""

    def __init__(
        self,
        min_interval: float = MIN_INTERVAL_SECONDS,
        max_retries: int = MAX_RETRIES,
        backoff_base: float = BACKOFF_BASE_SECONDS,
        max_backoff: float = MAX_BACKOFF_SECONDS,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        if min_interval < 0:
            raise ValueError(f"min_interval must be >= 0, got {min_interval}")
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")

        self.min_interval = min_interval
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.max_backoff = max_backoff
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep

        self._lock = asyncio.Lock()
        self._last_dispatch: Optional[float] = None

        # Stats
        self.dispatched = 0
        self.retries = 0

    @classmethod
    def from_settings(cls, settings: Any) -> "RateLimiter":
        return cls(
            min_interval=getattr(settings, "request_delay_ms", 250) / 1000.0,
            max_retries=getattr(settings, "max_retries", MAX_RETRIES),
            backoff_base=getattr(settings, "backoff_base_seconds", BACKOFF_BASE_SECONDS),
            max_backoff=getattr(settings, "max_backoff_seconds", MAX_BACKOFF_SECONDS),
        )

    async def wait(self) -> None:
        """Block until this caller may dispatch, then claim the slot."""
        async with self._lock:
            now = self._clock()
            if self._last_dispatch is not None:
                remaining = self.min_interval - (now - self._last_dispatch)
                if remaining > 0:
                    await self._sleep(remaining)
                    now = self._clock()
            self._last_dispatch = now
            self.dispatched += 1

    def backoff_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Delay before retry number ``attempt + 1``. Server-specified delays win."""
        if retry_after is not None and retry_after >= 0:
            return float(retry_after)
        return min(self.backoff_base * (2 ** attempt), self.max_backoff)

    async def execute(
        self,
        request: Callable[[], Awaitable[T]],
        description: str = "request",
    ) -> T:
        """
        Dispatch ``request()`` through the gate, retrying retryable failures.

        Args:
            request: Zero-argument coroutine factory (called once per attempt).
            description: Label for log lines.

        Returns:
            Whatever the request returns.

        Raises:
            The last retryable error once ``max_retries`` is exhausted, or any
            non-retryable error immediately.
        """
        attempt = 0
        while True:
            await self.wait()
            try:
                return await request()
            except RateLimitedError as e:
                error: Exception = e
                delay = self.backoff_delay(attempt, e.retry_after)
            except (TransientNetworkError, UpstreamServerError) as e:
                error = e
                delay = self.backoff_delay(attempt)

            attempt += 1
            if attempt > self.max_retries:
                logger.error(f"{description} failed after {self.max_retries} retries: {error}")
                raise error

            self.retries += 1
            logger.warning(
                f"{description} -> {error}, retrying in {delay:.2f}s "
                f"(attempt {attempt}/{self.max_retries})"
            )
            await self._sleep(delay)
