"""Graph builder: GRAPH commands + resolved tables -> drawable primitives.

Each command resolves its frame, takes the x series from the XAXIS column
(falling back to a 0-based row index when the frame has no such column) and
emits one primitive per series. Nulls become 0.0. A second pass adds
trade-window rectangles from `entry`/`exit`/`limit` markers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional

import pandas as pd

from qql.errors import GraphError
from qql.engine.sanitize import TIME_COLUMN
from qql.language.ast import Bar, Candle, DrawCommand, GraphSection, Line

TITLE = "QQL Plot"


class DrawKind(str, Enum):
    LINE = "line"
    BAR = "bar"
    CANDLESTICK = "candlestick"
    GREEN_RECT = "green_rect"
    RED_RECT = "red_rect"


@dataclass
class DrawType:
    """One drawable series.

    `values` holds one float per x for LINE/BAR, an `(o, h, l, c)` tuple per x
    for CANDLESTICK and an `(x_start, x_end, y)` tuple per rectangle.
    """

    kind: DrawKind
    label: str
    x: list[float]
    values: list

    def y_values(self) -> list[float]:
        if self.kind in (DrawKind.LINE, DrawKind.BAR):
            return list(self.values)
        if self.kind is DrawKind.CANDLESTICK:
            return [v for ohlc in self.values for v in ohlc]
        return [r[2] for r in self.values]


@dataclass
class Graph:
    data: list[DrawType] = field(default_factory=list)
    axis_labels: list[float] = field(default_factory=list)
    title: str = TITLE

    def max(self) -> float:
        ys = [y for d in self.data for y in d.y_values()]
        return max(ys) if ys else 0.0

    def min(self) -> float:
        ys = [y for d in self.data for y in d.y_values()]
        return min(ys) if ys else 0.0


def _values(frame: pd.DataFrame, frame_name: str, column: str) -> list[float]:
    if column not in frame.columns:
        raise GraphError(f"column '{column}' not found in frame '{frame_name}'")
    return pd.to_numeric(frame[column], errors="coerce").astype(float).fillna(0.0).tolist()


def _x_values(frame: pd.DataFrame, xaxis: str) -> list[float]:
    if xaxis in frame.columns:
        return pd.to_numeric(frame[xaxis], errors="coerce").astype(float).fillna(0.0).tolist()
    return [float(i) for i in range(len(frame))]


def _command_series(cmd: DrawCommand, frame: pd.DataFrame, x: list[float]) -> list[DrawType]:
    if isinstance(cmd, Line):
        return [
            DrawType(DrawKind.LINE, f"{cmd.frame} - {name}", x, _values(frame, cmd.frame, name))
            for name in cmd.series
        ]
    if isinstance(cmd, Bar):
        return [DrawType(DrawKind.BAR, f"{cmd.frame} - {cmd.y}", x, _values(frame, cmd.frame, cmd.y))]
    if isinstance(cmd, Candle):
        o, h, l, c = (_values(frame, cmd.frame, name) for name in (cmd.open, cmd.high, cmd.low, cmd.close))
        return [DrawType(DrawKind.CANDLESTICK, f"{cmd.frame} - {cmd.name}", x, list(zip(o, h, l, c)))]
    raise GraphError(f"unknown draw command {cmd!r}")


def _markers_for(frame_name: str, frame: pd.DataFrame, ledger: Optional[pd.DataFrame],
                 over_frame: Optional[str]) -> Optional[pd.DataFrame]:
    """Per-row entry/exit/limit ids aligned to `frame` rows, if any exist."""
    if {"entry", "exit", "limit"}.issubset(frame.columns):
        return frame[["entry", "exit", "limit"]].reset_index(drop=True)
    if ledger is None or frame_name != over_frame or TIME_COLUMN not in frame.columns:
        return None
    rows = frame[[TIME_COLUMN]].reset_index(drop=True)
    return rows.merge(ledger, on=TIME_COLUMN, how="left")[["entry", "exit", "limit"]]


def trade_windows(frame_name: str, frame: pd.DataFrame, x: list[float], markers: pd.DataFrame) -> list[DrawType]:
    entries: dict[str, int] = {}
    exits: dict[str, int] = {}
    limits: dict[str, int] = {}
    for i, (en, ex, li) in enumerate(markers.itertuples(index=False, name=None)):
        if pd.notna(en):
            entries[str(en)] = i
        if pd.notna(ex):
            exits[str(ex)] = i
        if pd.notna(li):
            limits[str(li)] = i

    strikes = _values(frame, frame_name, "close") if "close" in frame.columns else [0.0] * len(frame)
    green, red = [], []
    for uid, start in entries.items():
        if uid in exits:
            green.append((x[start], x[exits[uid]], strikes[start]))
        elif uid in limits:
            red.append((x[start], x[limits[uid]], strikes[start]))

    out: list[DrawType] = []
    if green:
        out.append(DrawType(DrawKind.GREEN_RECT, "Trades - Exits", [g[0] for g in green], green))
    if red:
        out.append(DrawType(DrawKind.RED_RECT, "Trades - Limits", [r[0] for r in red], red))
    return out


def graph_over_data(
    section: GraphSection,
    tables: Mapping[str, pd.DataFrame],
    ledger: Optional[pd.DataFrame] = None,
    over_frame: Optional[str] = None,
) -> Graph:
    graph = Graph()
    seen_frames: list[str] = []
    for i, cmd in enumerate(section.commands):
        frame = tables.get(cmd.frame)
        if frame is None:
            raise GraphError(f"Frame '{cmd.frame}' not found")
        x = _x_values(frame, section.xaxis)
        if i == 0:
            graph.axis_labels = list(x)
        graph.data.extend(_command_series(cmd, frame, x))
        if cmd.frame not in seen_frames:
            seen_frames.append(cmd.frame)

    for name in seen_frames:
        frame = tables[name]
        markers = _markers_for(name, frame, ledger, over_frame)
        if markers is not None:
            graph.data.extend(trade_windows(name, frame, _x_values(frame, section.xaxis), markers))
    return graph
