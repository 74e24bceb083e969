"""
Single-instance run lock.

A JSON file ``{"holder_pid": ..., "acquired_at": ...}`` created with
O_CREAT | O_EXCL, so at most one process holds it. A lock older than
``stale_after_seconds`` is considered abandoned and may be reclaimed.
"""

import json
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Union

from cryptotrend.core.exceptions import LockContentionError
from cryptotrend.core.models import LockState

logger = logging.getLogger(__name__)

UTC = timezone.utc

DEFAULT_LOCK_PATH = "./out/.cryptotrend.lock"
DEFAULT_STALE_SECONDS = 6 * 3600


class RunLock:
    """
    Exclusive, stale-aware lock file.

    Usage:
        with RunLock(path):
            ...  # raises LockContentionError if another holder is active
    """

    def __init__(
        self,
        path: Union[str, Path] = DEFAULT_LOCK_PATH,
        stale_after_seconds: float = DEFAULT_STALE_SECONDS,
        pid: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.path = Path(path)
        self.stale_after_seconds = stale_after_seconds
        self.pid = pid if pid is not None else os.getpid()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._held: Optional[LockState] = None

    @classmethod
    def from_settings(cls, settings: Any = None) -> "RunLock":
        return cls(
            path=getattr(settings, "lock_file", DEFAULT_LOCK_PATH),
            stale_after_seconds=getattr(settings, "lock_stale_seconds", DEFAULT_STALE_SECONDS),
        )

    @property
    def held(self) -> bool:
        return self._held is not None

    def read_state(self) -> Optional[LockState]:
        """Current lock content, None if absent or unreadable."""
        return self._load(self.path)

    def _load(self, path: Path) -> Optional[LockState]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return LockState.from_dict(json.load(f))
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, OSError) as e:
            logger.warning(f"Unreadable lock file {path}: {e}")
            return None

    def _age_seconds(self, state: Optional[LockState]) -> float:
        now = self._clock()
        if state is not None:
            return state.age_seconds(now)
        # Unreadable content: fall back to the file's modification time
        try:
            return now.timestamp() - os.path.getmtime(self.path)
        except FileNotFoundError:
            return 0.0

    def is_stale(self, state: Optional[LockState]) -> bool:
        return self._age_seconds(state) > self.stale_after_seconds

    def acquire(self) -> LockState:
        """
        Take the lock.

        Raises:
            LockContentionError: if a live (non-stale) holder exists.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                current = self.read_state()
                if not self.is_stale(current):
                    holder = current.holder_pid if current else None
                    raise LockContentionError(
                        f"lock {self.path} held by pid {holder}", holder_pid=holder
                    )
                logger.warning(
                    f"Reclaiming stale lock {self.path} "
                    f"(pid {current.holder_pid if current else '?'}, "
                    f"age {self._age_seconds(current):.0f}s)"
                )
                self._reclaim(current)
                continue

            state = LockState(holder_pid=self.pid, acquired_at=self._clock())
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state.to_dict(), f)
                f.flush()
                os.fsync(f.fileno())
            self._held = state
            logger.debug(f"Acquired lock {self.path} (pid {self.pid})")
            return state

        raise LockContentionError(f"lock {self.path} reclaimed concurrently by another process")

    def _reclaim(self, stale: Optional[LockState]) -> None:
        """
        Move the stale lock aside, then check it is the one we judged stale.

        The rename is atomic, so only one reclaimer gets the file. If what we
        moved is not the stale snapshot, another process already reclaimed
        and re-created the lock: put it back and give up.
        """
        aside = self.path.with_name(f"{self.path.name}.stale.{self.pid}.{uuid.uuid4().hex}")
        try:
            os.rename(self.path, aside)
        except FileNotFoundError:
            return

        moved = self._load(aside)
        if moved == stale:
            os.unlink(aside)
            return

        try:
            os.link(aside, self.path)
        except FileExistsError:
            pass
        finally:
            os.unlink(aside)
        holder = moved.holder_pid if moved else None
        raise LockContentionError(
            f"lock {self.path} reclaimed concurrently by pid {holder}", holder_pid=holder
        )

    def release(self) -> None:
        """Remove the lock file if this instance still holds it."""
        if self._held is None:
            return
        current = self.read_state()
        if (
            current is not None
            and current.holder_pid == self._held.holder_pid
            and current.acquired_at == self._held.acquired_at
        ):
            try:
                os.unlink(self.path)
            except FileNotFoundError:
                pass
            logger.debug(f"Released lock {self.path}")
        else:
            logger.warning(f"Lock {self.path} no longer ours; leaving it in place")
        self._held = None

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()

