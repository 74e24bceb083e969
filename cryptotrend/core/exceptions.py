"""
Cryptotrend custom exceptions.
"""

from typing import Optional


class CryptotrendError(Exception):
    """Base exception for Cryptotrend."""

    pass


class ConfigurationError(CryptotrendError):
    """Configuration error."""

    pass


class DataError(CryptotrendError):
    """Data or feed error."""

    pass


class TransientNetworkError(DataError):
    """Timeout or connection failure. Retried with backoff."""

    pass


class RateLimitedError(DataError):
    """Upstream answered 429. Retried after the mandated delay."""

    def __init__(self, message: str = "rate limited", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamServerError(DataError):
    """Upstream answered 5xx. Retried with backoff."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class InvalidAssetError(DataError):
    """Upstream does not know the asset. The asset is skipped."""

    pass


class CorruptPersistedDataError(DataError):
    """A persisted series cannot be parsed. The asset is skipped."""

    pass


class UpstreamParseError(CorruptPersistedDataError):
    """Upstream payload does not match the expected schema."""

    pass


class LockContentionError(CryptotrendError):
    """Another instance holds the run lock."""

    def __init__(self, message: str, holder_pid: Optional[int] = None):
        super().__init__(message)
        self.holder_pid = holder_pid


class SchedulingError(CryptotrendError):
    """A scheduled cycle could not be planned or completed."""

    pass
