"""
Bar store: persisted per-asset daily series as CSV.

Layout under ``out_dir``:
    BTC.csv                 baseline series
    {SYMBOL}_{id}.csv       one file per asset
    manifest.json           index of persisted series

Files are only ever replaced whole, via a temporary file in the same
directory + fsync + os.replace, so a crash never leaves a partial file.
"""

import json
import logging
import os
import tempfile
from datetime import date
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from cryptotrend.core.exceptions import CorruptPersistedDataError
from cryptotrend.core.models import Bar, ManifestEntry

logger = logging.getLogger(__name__)

BAR_COLUMNS = ["open", "high", "low", "close"]
BASELINE_FILENAME = "BTC.csv"
MANIFEST_FILENAME = "manifest.json"

PathLike = Union[str, Path]


# =============================================================================
# Atomic writes
# =============================================================================


def atomic_write_text(path: PathLike, text: str) -> None:
    """Replace ``path`` with ``text`` atomically."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


# =============================================================================
# Frames
# =============================================================================


def empty_frame() -> pd.DataFrame:
    df = pd.DataFrame(columns=BAR_COLUMNS, dtype=float)
    df.index = pd.DatetimeIndex([], name="date")
    return df


def bars_to_frame(bars: Iterable[Bar]) -> pd.DataFrame:
    """Bars -> DataFrame indexed by date (sorted, last duplicate wins)."""
    rows = [
        {
            "date": pd.Timestamp(b.date),
            "open": b.open,
            "high": np.nan if b.high is None else b.high,
            "low": np.nan if b.low is None else b.low,
            "close": b.close,
        }
        for b in bars
    ]
    if not rows:
        return empty_frame()
    df = pd.DataFrame(rows).set_index("date")
    return _normalize(df[BAR_COLUMNS].astype(float))


def frame_to_bars(df: pd.DataFrame) -> List[Bar]:
    bars = []
    for ts, row in df.iterrows():
        bars.append(
            Bar(
                date=ts.date(),
                open=float(row["open"]),
                close=float(row["close"]),
                high=None if pd.isna(row["high"]) else float(row["high"]),
                low=None if pd.isna(row["low"]) else float(row["low"]),
            )
        )
    return bars


def _normalize(df: pd.DataFrame) -> pd.DataFrame:
    df = df[~df.index.duplicated(keep="last")]
    df = df.sort_index()
    df.index.name = "date"
    return df


def merge_bars(existing: pd.DataFrame, new: pd.DataFrame) -> pd.DataFrame:
    """
    Merge two series: union of dates, sorted, the newer row wins on overlap.

    Merging the same rows twice yields the same frame, which makes resume
    idempotent.
    """
    if existing.empty:
        return _normalize(new.copy())
    if new.empty:
        return _normalize(existing.copy())
    return _normalize(pd.concat([existing, new]))


# =============================================================================
# CSV I/O
# =============================================================================


def read_bars(path: PathLike) -> pd.DataFrame:
    """
    Load a persisted series.

    Raises:
        FileNotFoundError: if the file does not exist.
        CorruptPersistedDataError: if the file cannot be parsed.
    """
    path = Path(path)
    try:
        raw = pd.read_csv(path, dtype={"date": str})
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise CorruptPersistedDataError(f"{path}: {e}") from e

    missing = {"date", "open", "close"} - set(raw.columns)
    if missing:
        raise CorruptPersistedDataError(f"{path}: missing columns {sorted(missing)}")
    for col in ("high", "low"):
        if col not in raw.columns:
            raw[col] = np.nan

    try:
        raw["date"] = pd.to_datetime(raw["date"], format="%Y-%m-%d")
        for col in BAR_COLUMNS:
            raw[col] = pd.to_numeric(raw[col], errors="raise").astype(float)
    except (ValueError, TypeError) as e:
        raise CorruptPersistedDataError(f"{path}: {e}") from e

    if raw[["open", "close"]].isna().any().any():
        raise CorruptPersistedDataError(f"{path}: empty open/close values")

    return _normalize(raw.set_index("date")[BAR_COLUMNS])


def write_bars(path: PathLike, df: pd.DataFrame) -> None:
    """Persist a series atomically (8 decimal places, empty high/low allowed)."""
    df = _normalize(df[BAR_COLUMNS])
    text = df.to_csv(
        index_label="date",
        date_format="%Y-%m-%d",
        float_format="%.8f",
        na_rep="",
        lineterminator="\n",
    )
    atomic_write_text(path, text)


def last_date(path: PathLike) -> Optional[date]:
    """Resume cursor: last date in the persisted series, None if absent or empty."""
    path = Path(path)
    if not path.exists():
        return None
    df = read_bars(path)
    if df.empty:
        return None
    return df.index[-1].date()


# =============================================================================
# Store
# =============================================================================


def is_asset_filename(name: str) -> bool:
    """
    True for ``{SYMBOL}_{id}.csv`` as written by BarStore.path_for.

    The symbol part is upper case, which keeps report files such as
    ``equity_curve.csv`` out of the asset universe.
    """
    if not name.endswith(".csv") or name == BASELINE_FILENAME:
        return False
    symbol, sep, coin_id = name[: -len(".csv")].partition("_")
    return bool(sep and symbol and coin_id) and symbol == symbol.upper()


class BarStore:
    """Naming and persistence of series under one output directory."""

    def __init__(self, out_dir: PathLike):
        self.out_dir = Path(out_dir)

    def path_for(self, symbol: str, coin_id: Optional[str] = None) -> Path:
        """``BTC.csv`` for the baseline (no id), ``{SYMBOL}_{id}.csv`` otherwise."""
        if coin_id is None:
            return self.out_dir / f"{symbol.upper()}.csv"
        return self.out_dir / f"{symbol.upper()}_{coin_id}.csv"

    @property
    def baseline_path(self) -> Path:
        return self.out_dir / BASELINE_FILENAME

    @property
    def manifest_path(self) -> Path:
        return self.out_dir / MANIFEST_FILENAME

    def read(self, path: PathLike) -> pd.DataFrame:
        return read_bars(path)

    def last_date(self, path: PathLike) -> Optional[date]:
        return last_date(path)

    def merge_and_write(self, path: PathLike, new: pd.DataFrame) -> Tuple[pd.DataFrame, int]:
        """
        Merge ``new`` into the persisted series (if any) and replace the file.

        Returns the merged frame and the number of dates it added.
        """
        path = Path(path)
        existing = read_bars(path) if path.exists() else empty_frame()
        merged = merge_bars(existing, new)
        write_bars(path, merged)
        added = len(merged) - len(existing)
        logger.info(f"Wrote {path.name}: {len(merged)} bars (+{added})")
        return merged, added

    def asset_files(self) -> List[Path]:
        """Persisted non-baseline series, sorted by filename."""
        if not self.out_dir.exists():
            return []
        return sorted(p for p in self.out_dir.glob("*.csv") if is_asset_filename(p.name))

    def write_manifest(self, entries: List[ManifestEntry]) -> Path:
        payload = json.dumps([e.to_dict() for e in entries], indent=2)
        atomic_write_text(self.manifest_path, payload + "\n")
        logger.info(f"Wrote manifest with {len(entries)} entries")
        return self.manifest_path

    def read_manifest(self) -> List[ManifestEntry]:
        if not self.manifest_path.exists():
            return []
        try:
            data = json.loads(self.manifest_path.read_text(encoding="utf-8"))
            return [ManifestEntry(**item) for item in data]
        except (json.JSONDecodeError, TypeError) as e:
            raise CorruptPersistedDataError(f"{self.manifest_path}: {e}") from e
