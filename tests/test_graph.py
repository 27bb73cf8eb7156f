"""Graph builder: series mapping, x-axis fallback and trade rectangles."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from qql.engine.graph import DrawKind, Graph, graph_over_data
from qql.errors import GraphError
from qql.language.ast import Bar, Candle, GraphSection, Line


def _tables() -> dict[str, pd.DataFrame]:
    return {
        "f": pd.DataFrame(
            {
                "timestamp": [10, 20, 30, 40, 50],
                "open": [1.0, 2.0, 3.0, 4.0, 5.0],
                "high": [2.0, 3.0, 4.0, 5.0, 6.0],
                "low": [0.5, 1.5, 2.5, 3.5, 4.5],
                "close": [1.5, 2.5, np.nan, 4.5, 5.5],
                "sma": [0.0, 2.0, 3.0, 4.0, 0.0],
            }
        )
    }


def test_lines_and_bars() -> None:
    section = GraphSection(xaxis="timestamp", commands=(Line(("close", "sma"), "f"), Bar("open", "f")))
    g = graph_over_data(section, _tables())
    assert [d.kind for d in g.data] == [DrawKind.LINE, DrawKind.LINE, DrawKind.BAR]
    assert [d.label for d in g.data] == ["f - close", "f - sma", "f - open"]
    assert g.data[0].x == [10.0, 20.0, 30.0, 40.0, 50.0]
    assert g.data[0].values == [1.5, 2.5, 0.0, 4.5, 5.5]
    assert g.axis_labels == [10.0, 20.0, 30.0, 40.0, 50.0]
    assert g.title == "QQL Plot"


def test_candles_and_extent() -> None:
    section = GraphSection(xaxis="timestamp", commands=(Candle("open", "high", "low", "close", "f"),))
    g = graph_over_data(section, _tables())
    (candles,) = g.data
    assert candles.kind is DrawKind.CANDLESTICK
    assert candles.values[0] == (1.0, 2.0, 0.5, 1.5)
    assert g.max() == 6.0
    assert g.min() == 0.0


def test_missing_xaxis_falls_back_to_row_index() -> None:
    section = GraphSection(xaxis="date", commands=(Line(("close",), "f"),))
    g = graph_over_data(section, _tables())
    assert g.data[0].x == [0.0, 1.0, 2.0, 3.0, 4.0]


def test_missing_frame_and_column() -> None:
    with pytest.raises(GraphError, match="Frame 'g' not found"):
        graph_over_data(GraphSection("timestamp", (Line(("close",), "g"),)), _tables())
    with pytest.raises(GraphError, match="column 'volume'"):
        graph_over_data(GraphSection("timestamp", (Bar("volume", "f"),)), _tables())


def test_trade_rectangles_from_ledger() -> None:
    ledger = pd.DataFrame(
        {
            "timestamp": [10, 30, 40, 50],
            "entry": ["1", None, "2", None],
            "exit": [None, "1", None, None],
            "limit": [None, None, None, "2"],
        }
    )
    section = GraphSection("timestamp", (Line(("close",), "f"),))
    g = graph_over_data(section, _tables(), ledger=ledger, over_frame="f")
    kinds = {d.kind: d for d in g.data}
    assert kinds[DrawKind.GREEN_RECT].label == "Trades - Exits"
    assert kinds[DrawKind.GREEN_RECT].values == [(10.0, 30.0, 1.5)]
    assert kinds[DrawKind.RED_RECT].label == "Trades - Limits"
    assert kinds[DrawKind.RED_RECT].values == [(40.0, 50.0, 4.5)]


def test_ledger_ignored_for_other_frames() -> None:
    ledger = pd.DataFrame({"timestamp": [10], "entry": ["1"], "exit": [None], "limit": [None]})
    g = graph_over_data(GraphSection("timestamp", (Line(("close",), "f"),)), _tables(), ledger=ledger, over_frame="h")
    assert [d.kind for d in g.data] == [DrawKind.LINE]


def test_empty_graph_extent() -> None:
    assert Graph().max() == 0.0
    assert Graph().min() == 0.0
