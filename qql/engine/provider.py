"""Data providers.

A provider serves one DataFrame per frame request with at least `timestamp`
(int64 epoch seconds), `open`/`high`/`low`/`close` and `volume`. Date ranges
are inclusive of the end day; live requests return the trailing
`duration / interval` rows.
"""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Protocol

import pandas as pd

from qql.errors import ProviderError
from qql.engine.sanitize import TIME_COLUMN
from qql.language.ast import QuoteRequest

_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
_DAY = 86400


def interval_seconds(text: str) -> int:
    """`5m` -> 300."""
    if len(text) < 2 or text[-1] not in _UNIT_SECONDS or not text[:-1].isdigit():
        raise ProviderError(f"invalid interval '{text}'")
    return int(text[:-1]) * _UNIT_SECONDS[text[-1]]


def iso_to_epoch(text: str) -> int:
    ts = pd.Timestamp(text)
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return int((ts - pd.Timestamp("1970-01-01", tz="UTC")) // pd.Timedelta(seconds=1))


def to_epoch_seconds(series: pd.Series) -> pd.Series:
    if pd.api.types.is_integer_dtype(series):
        return series.astype("int64")
    dt = pd.to_datetime(series, utc=True)
    return ((dt - pd.Timestamp("1970-01-01", tz="UTC")) // pd.Timedelta(seconds=1)).astype("int64")


class DataProvider(Protocol):
    def fetch(self, requests: Mapping[str, QuoteRequest]) -> dict[str, pd.DataFrame]:
        ...


def select_rows(df: pd.DataFrame, request: QuoteRequest) -> pd.DataFrame:
    """Apply a request's time window and check its fields exist."""
    if TIME_COLUMN not in df.columns:
        raise ProviderError(f"ticker '{request.ticker}' has no '{TIME_COLUMN}' column")
    missing = [f for f in request.fields if f not in df.columns]
    if missing:
        raise ProviderError(f"ticker '{request.ticker}' has no column(s) {', '.join(missing)}")

    out = df.copy()
    try:
        out[TIME_COLUMN] = to_epoch_seconds(out[TIME_COLUMN])
    except (ValueError, TypeError) as e:
        raise ProviderError(f"ticker '{request.ticker}': unreadable timestamps ({e})") from e
    out = out.sort_values(TIME_COLUMN, kind="mergesort").reset_index(drop=True)
    if request.start is not None and request.end is not None:
        lo, hi = iso_to_epoch(request.start), iso_to_epoch(request.end) + _DAY
        out = out[(out[TIME_COLUMN] >= lo) & (out[TIME_COLUMN] < hi)]
    elif request.interval is not None and request.duration is not None:
        rows = max(1, interval_seconds(request.duration) // interval_seconds(request.interval))
        out = out.tail(rows)
    return out.reset_index(drop=True)


class InMemoryProvider:
    """Serves pre-built frames keyed by ticker (case-insensitive)."""

    def __init__(self, frames_by_ticker: Mapping[str, pd.DataFrame]) -> None:
        self._frames = {k.upper(): v for k, v in frames_by_ticker.items()}

    def fetch(self, requests: Mapping[str, QuoteRequest]) -> dict[str, pd.DataFrame]:
        out: dict[str, pd.DataFrame] = {}
        for name, request in requests.items():
            df = self._frames.get(request.ticker.upper())
            if df is None:
                raise ProviderError(f"no data for ticker '{request.ticker}' (frame '{name}')")
            out[name] = select_rows(df, request)
        return out


class CsvProvider:
    """Reads `<TICKER>.csv` files from a directory."""

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory)
        if not self._dir.is_dir():
            raise ProviderError(f"data directory '{self._dir}' does not exist")

    def _path_for(self, ticker: str) -> Path:
        for path in sorted(self._dir.glob("*.csv")):
            if path.stem.upper() == ticker.upper():
                return path
        raise ProviderError(f"no CSV file for ticker '{ticker}' in '{self._dir}'")

    def fetch(self, requests: Mapping[str, QuoteRequest]) -> dict[str, pd.DataFrame]:
        out: dict[str, pd.DataFrame] = {}
        for name, request in requests.items():
            path = self._path_for(request.ticker)
            try:
                df = pd.read_csv(path)
            except (OSError, ValueError) as e:
                raise ProviderError(f"failed to read '{path}': {e}") from e
            out[name] = select_rows(df, request)
        return out
