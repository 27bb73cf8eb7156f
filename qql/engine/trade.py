"""Entry/exit/stop-loss trade simulation.

A single forward scan over aligned rows. At each row the entry condition is
tested; on a valid entry a trade id is allocated and up to `hold` rows are
scanned ahead. At each lookahead row the exit condition is tested before the
stop-loss condition. A trade that neither exits nor stops is closed at the
hold boundary (clamped to the last row). After a trade, the scan skips ahead
by `max(hold, 1)` rows, so trades never overlap. The one exception is the
final row: when the previous trade already closed there, no new trade opens.

References are `frame.column`; an unqualified reference resolves against the
trade's `over_frame`. References spanning several frames are aligned with an
inner join on `timestamp`.
"""

from __future__ import annotations

import itertools
import math
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from qql.errors import TradeError
from qql.engine.sanitize import TIME_COLUMN
from qql.language.ast import TradeSection

LEDGER_COLUMNS = [TIME_COLUMN, "entry", "exit", "limit"]
TRADES_COLUMNS = ["id", "Entry", "Exit", "Limit"]
_TRADES_DTYPES = {"id": object, "Entry": "Int64", "Exit": "Int64", "Limit": "Int64"}

# [CHOICE] summary position size
# [FORMULA] pnl_per_1000 = 1000 / entry_price * (close_price - entry_price)
POSITION_SIZE = 1000.0


class TradeIdAllocator:
    """Monotonic trade id source (`"1"`, `"2"`, ...)."""

    __slots__ = ("_counter",)

    def __init__(self, start: int = 1) -> None:
        self._counter = itertools.count(start)

    def next(self) -> str:
        return str(next(self._counter))


@dataclass
class TradeMarkers:
    """Per-row trade ids; `None` where nothing happened."""

    entry: list[Optional[str]]
    exit: list[Optional[str]]
    limit: list[Optional[str]]

    @classmethod
    def empty(cls, n: int) -> "TradeMarkers":
        return cls(entry=[None] * n, exit=[None] * n, limit=[None] * n)

    def __len__(self) -> int:
        return len(self.entry)


@dataclass(frozen=True, slots=True)
class TradeSummary:
    bar_chart_data: list[float]
    total_trades: int
    win_rate: float
    avg_win_per_1000: float
    avg_loss_per_1000: float


@dataclass(frozen=True, slots=True)
class TradeRect:
    """Corner points `(timestamp, price)` of the two rectangles drawn per trade."""

    uid: str
    buy: tuple[tuple[float, float], ...]
    limit: tuple[tuple[float, float], ...]


@dataclass
class TradeOutcome:
    markers: TradeMarkers
    ledger: pd.DataFrame
    table: pd.DataFrame
    aligned: pd.DataFrame = field(repr=False)


def row_within(cols: Sequence[np.ndarray], row: int, threshold: float) -> bool:
    """All adjacent pairs present and within `threshold` of each other."""
    if len(cols) < 2:
        return False
    values = [float(c[row]) for c in cols]
    if not all(math.isfinite(v) for v in values):
        return False
    return all(abs(a - b) <= threshold for a, b in zip(values, values[1:]))


def simulate(
    entry_cols: Sequence[np.ndarray],
    exit_cols: Sequence[np.ndarray],
    within_entry: float,
    within_exit: float,
    stop_loss: float,
    hold: int,
    *,
    ids: Optional[TradeIdAllocator] = None,
) -> TradeMarkers:
    n = len(entry_cols[0]) if entry_cols else 0
    markers = TradeMarkers.empty(n)
    if n == 0 or len(entry_cols) < 2 or len(exit_cols) < 1:
        return markers
    ids = ids or TradeIdAllocator()
    hold = int(hold)

    row = 0
    while row < n:
        if row == n - 1 and (markers.exit[row] is not None or markers.limit[row] is not None):
            # the previous trade closed on the final row; an entry here would overwrite it
            break
        if not row_within(entry_cols, row, within_entry):
            row += 1
            continue

        uid = ids.next()
        markers.entry[row] = uid
        stop_level = float(entry_cols[0][row]) * (1.0 - stop_loss)
        last = min(row + hold, n - 1)

        closed = False
        for idx in range(row + 1, last + 1):
            if row_within(exit_cols, idx, within_exit):
                markers.exit[idx] = uid
                closed = True
                break
            if float(exit_cols[0][idx]) < stop_level:
                markers.limit[idx] = uid
                closed = True
                break
        if not closed:
            markers.exit[last] = uid

        row += max(hold, 1)
    return markers


def resolve_ref(ref: str, over_frame: str) -> tuple[str, str]:
    """`frame.col` -> (frame, col); bare `col` resolves against `over_frame`."""
    frame, sep, column = ref.partition(".")
    if not sep:
        return over_frame, ref
    if not frame or not column:
        raise TradeError(f"invalid reference '{ref}'")
    return frame, column


def align_by_timestamp(
    tables: Mapping[str, pd.DataFrame],
    refs: Sequence[tuple[str, str]],
    over_frame: str,
) -> pd.DataFrame:
    """Inner-join the referenced columns of every frame on `timestamp`.

    Columns come out named `frame.col`.
    """
    frames = list(dict.fromkeys([over_frame, *(f for f, _ in refs)]))
    parts: list[pd.DataFrame] = []
    for name in frames:
        df = tables.get(name)
        if df is None:
            raise TradeError(f"Frame '{name}' not found")
        if TIME_COLUMN not in df.columns:
            raise TradeError(f"frame '{name}' has no '{TIME_COLUMN}' column")
        cols = list(dict.fromkeys(c for f, c in refs if f == name))
        for c in cols:
            if c not in df.columns:
                raise TradeError(f"column '{name}.{c}' not found")
        parts.append(df[[TIME_COLUMN, *cols]].rename(columns={c: f"{name}.{c}" for c in cols}))
    aligned = parts[0]
    for part in parts[1:]:
        aligned = aligned.merge(part, on=TIME_COLUMN, how="inner")
    return aligned.sort_values(TIME_COLUMN, kind="mergesort").reset_index(drop=True)


def build_ledger(timestamps: Sequence[int], markers: TradeMarkers) -> pd.DataFrame:
    ledger = pd.DataFrame(
        {
            TIME_COLUMN: list(timestamps),
            "entry": markers.entry,
            "exit": markers.exit,
            "limit": markers.limit,
        },
        columns=LEDGER_COLUMNS,
    )
    marked = ledger[["entry", "exit", "limit"]].notna().any(axis=1)
    return ledger[marked].reset_index(drop=True)


def join_trades(ledger: pd.DataFrame) -> pd.DataFrame:
    """Ledger -> one row per closed trade: `{id, Entry, Exit, Limit}` timestamps.

    Timestamps are nullable int64 (`Int64`); a trade has either an Exit or a Limit.
    """
    if ledger.empty:
        return pd.DataFrame(columns=TRADES_COLUMNS).astype(_TRADES_DTYPES)

    def side(marker: str, label: str) -> pd.DataFrame:
        rows = ledger[ledger[marker].notna()]
        side_df = pd.DataFrame({"id": rows[marker].to_numpy(), label: rows[TIME_COLUMN].to_numpy()})
        return side_df.astype({"id": _TRADES_DTYPES["id"], label: _TRADES_DTYPES[label]})

    table = side("entry", "Entry").merge(side("exit", "Exit"), on="id", how="left")
    table = table.merge(side("limit", "Limit"), on="id", how="left")
    table = table[table["Exit"].notna() | table["Limit"].notna()]
    return table[TRADES_COLUMNS].astype(_TRADES_DTYPES).reset_index(drop=True)


def trades_over_data(section: TradeSection, tables: Mapping[str, pd.DataFrame]) -> TradeOutcome:
    """Run the scan for a TRADE section against resolved frame tables."""
    if section.over_frame not in tables:
        raise TradeError(f"Frame '{section.over_frame}' not found")
    entry_refs = [resolve_ref(r, section.over_frame) for r in section.entry]
    exit_refs = [resolve_ref(r, section.over_frame) for r in section.exit]
    aligned = align_by_timestamp(tables, [*entry_refs, *exit_refs], section.over_frame)

    def cols(refs: list[tuple[str, str]]) -> list[np.ndarray]:
        return [aligned[f"{f}.{c}"].to_numpy(dtype=np.float64, na_value=np.nan) for f, c in refs]

    markers = simulate(
        cols(entry_refs),
        cols(exit_refs),
        section.within_entry,
        section.within_exit,
        section.stop_loss,
        section.hold,
    )
    if len(markers) != len(aligned):
        # no entry columns at all
        markers = TradeMarkers.empty(len(aligned))
    ledger = build_ledger(aligned[TIME_COLUMN].tolist(), markers)
    return TradeOutcome(markers=markers, ledger=ledger, table=join_trades(ledger), aligned=aligned)


def _price_lookup(frame: pd.DataFrame) -> dict[int, float]:
    for column in ("open", "close"):
        if column in frame.columns:
            return dict(zip(frame[TIME_COLUMN].tolist(), frame[column].astype(float).tolist()))
    raise TradeError("trade summary needs an 'open' or 'close' column")


def trade_summary(section: TradeSection, table: pd.DataFrame, frame: pd.DataFrame) -> TradeSummary:
    """Win rate and per-$1000 averages for closed trades.

    Deltas are measured on opening prices (closing prices when the frame has
    no `open` column) looked up by timestamp.
    """
    prices = _price_lookup(frame)
    bar_chart_data: list[float] = []
    wins = losses = 0.0
    positives = negatives = 0

    for row in table.itertuples(index=False):
        entry_price = prices.get(row.Entry)
        closed_at = row.Exit if pd.notna(row.Exit) else row.Limit
        close_price = prices.get(closed_at)
        if entry_price is None or close_price is None:
            raise TradeError(f"trade '{row.id}' has no price at its entry or close timestamp")
        delta = close_price - entry_price
        bar_chart_data.append(delta)
        scaled = POSITION_SIZE / entry_price * delta if entry_price else 0.0
        if pd.notna(row.Exit):
            wins += scaled
        else:
            losses += scaled
        if delta > 0:
            positives += 1
        elif delta < 0:
            negatives += 1

    total = len(table)
    decided = positives + negatives
    return TradeSummary(
        bar_chart_data=bar_chart_data,
        total_trades=total,
        win_rate=positives / decided * 100.0 if decided else 0.0,
        avg_win_per_1000=wins / total if total else float("nan"),
        avg_loss_per_1000=losses / total if total else float("nan"),
    )


def trade_rectangles(section: TradeSection, table: pd.DataFrame, frame: pd.DataFrame) -> list[TradeRect]:
    """Per trade: the entry->close price box and the entry->stop-level box."""
    prices = _price_lookup(frame)
    rects: list[TradeRect] = []
    for row in table.itertuples(index=False):
        start = row.Entry
        end = row.Exit if pd.notna(row.Exit) else row.Limit
        entry_price = prices.get(start)
        close_price = prices.get(end)
        if entry_price is None or close_price is None:
            raise TradeError(f"trade '{row.id}' has no price at its entry or close timestamp")
        stop = entry_price * (1.0 - section.stop_loss)
        x0, x1 = float(start), float(end)
        rects.append(
            TradeRect(
                uid=str(row.id),
                buy=((x0, entry_price), (x1, entry_price), (x1, close_price), (x0, close_price)),
                limit=((x0, entry_price), (x1, entry_price), (x1, stop), (x0, stop)),
            )
        )
    return rects
