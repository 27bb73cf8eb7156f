"""End-to-end runs through the engine facade."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from qql.config import EngineConfig
from qql.engine.engine import Engine
from qql.engine.output import EngineStatus, OutputKind
from qql.engine.provider import CsvProvider, InMemoryProvider
from qql.errors import EngineError, ProviderError
from qql.kernels.compute import ComputeRuntime
from qql.language.ast import SectionStatus
from tests.conftest import make_ohlc

QUERY = """\
FRAME f
HISTORICAL TICKER AAPL FROM 20240101 TO 20240331
PULL timestamp, open, high, low, close
CALC close, open DIFFERENCE CALLED spread
CALC close, 5 SMA CALLED sma5
CALC close, 5 VOLATILITY CALLED vol
CALC close LINEAR_REGRESSION CALLED trend

GRAPH XAXIS timestamp
LINE close, sma5, trend FOR f
CANDLE open, high, low, close FOR f

TRADE STOCK OVER_FRAME f
ENTRY f.close, f.sma5, 1000
EXIT f.close, f.vol_pos, 0.5
LIMIT 0.05
HOLD 3
"""


def _engine(source: str = QUERY, **frames: pd.DataFrame) -> Engine:
    provider = InMemoryProvider(frames or {"AAPL": make_ohlc(40)})
    return Engine(source, provider=provider, runtime=ComputeRuntime("cpu", "torch"))


def test_full_run() -> None:
    engine = _engine()
    out = engine.run()
    assert out.kind is OutputKind.DATA
    assert engine.status is EngineStatus.STOPPED
    assert out.data is not None

    table = out.data.tables["f"]
    assert len(table) == 40
    for name in ("spread", "sma5", "vol", "vol_pos", "vol_neg", "trend"):
        assert table[name].dtype == np.float64
    np.testing.assert_allclose(table["spread"], table["close"] - table["open"], atol=1e-4)

    trades = out.data.trades
    assert trades is not None
    assert trades.over_frame == "f"
    assert trades.trade_summary.total_trades == len(trades.trades_table)
    assert len(trades.trades_graph) == len(trades.trades_table)
    assert trades.trades_table.columns.tolist() == ["id", "Entry", "Exit", "Limit"]
    assert trades.trade_summary.total_trades > 0

    graph = out.data.graph
    assert graph is not None
    labels = [d.label for d in graph.data]
    assert labels[:4] == ["f - close", "f - sma5", "f - trend", "f - candle"]
    assert len(graph.axis_labels) == 40


def test_date_range_filters_rows() -> None:
    engine = _engine(QUERY.replace("20240331", "20240110"))
    out = engine.run()
    assert out.data is not None
    assert len(out.data.tables["f"]) == 10


def test_parse_failure_reports_position() -> None:
    engine = _engine("FRAME f\nHISTORICAL TICKER AAPL FROM 20240101\n")
    with pytest.raises(EngineError, match=r"Failed to parse query: expected TO but found newline, line 2, column 37"):
        engine.run()
    assert engine.status is EngineStatus.ERROR
    assert engine.output.kind is OutputKind.ERROR
    assert "line 2" in engine.output.message


def test_unknown_ticker_aborts_before_calcs() -> None:
    engine = _engine(QUERY.replace("AAPL", "MSFT"))
    with pytest.raises(EngineError, match="Failed to fetch data"):
        engine.run()
    assert engine.output.kind is OutputKind.ERROR


def test_dispatch_failure_names_column() -> None:
    engine = _engine(QUERY.replace("CALC close, open DIFFERENCE", "CALC close, nope DIFFERENCE"))
    with pytest.raises(EngineError, match="unknown column 'nope'"):
        engine.run()


def test_invalid_graph_is_skipped_leniently() -> None:
    source = QUERY.replace("LINE close, sma5, trend FOR f", "LINE close, sma5, trend FOR")
    engine = _engine(source)
    out = engine.run()
    assert out.data is not None
    assert out.data.graph is None
    assert engine.query is not None
    assert engine.query.graph_status is SectionStatus.INVALID
    assert out.data.trades is not None


def test_strict_sections_fail_the_run() -> None:
    source = QUERY.replace("LINE close, sma5, trend FOR f", "LINE close, sma5, trend FOR")
    engine = _engine(source)
    engine.config = EngineConfig(strict_sections=True)
    with pytest.raises(EngineError, match="Failed to parse query"):
        engine.run()


def test_empty_source_yields_none() -> None:
    engine = _engine("-- nothing here\n")
    assert engine.run().kind is OutputKind.NONE
    assert engine.status is EngineStatus.STOPPED


def test_csv_provider_live_window(tmp_path) -> None:
    make_ohlc(30).to_csv(tmp_path / "spy.csv", index=False)
    source = "FRAME s\nLIVE TICKER SPY TICK 1d FOR 5d\nPULL timestamp, close\nCALC close, 3 SMA CALLED s3\n"
    engine = Engine(source, provider=CsvProvider(tmp_path), runtime=ComputeRuntime("cpu", "torch"))
    out = engine.run()
    assert out.data is not None
    table = out.data.tables["s"]
    assert len(table) == 5
    assert table.columns.tolist() == ["timestamp", "close", "s3"]


def test_csv_provider_errors(tmp_path) -> None:
    with pytest.raises(ProviderError):
        CsvProvider(tmp_path / "missing")
    provider = CsvProvider(tmp_path)
    engine = Engine(
        "FRAME s\nLIVE TICKER SPY TICK 1d FOR 5d\nPULL close\n",
        provider=provider,
        runtime=ComputeRuntime("cpu", "torch"),
    )
    with pytest.raises(EngineError, match="no CSV file for ticker 'SPY'"):
        engine.run()


def test_runtime_setup_failure_is_reported() -> None:
    engine = Engine(
        QUERY,
        provider=InMemoryProvider({"AAPL": make_ohlc(40)}),
        config=EngineConfig(device="cpu", backend="triton"),
    )
    with pytest.raises(EngineError, match="Failed to initialize compute runtime"):
        engine.run()
    assert engine.status is EngineStatus.ERROR
    assert engine.output.kind is OutputKind.ERROR


class _BrokenProvider:
    def fetch(self, requests):
        raise RuntimeError("socket closed")


def test_unexpected_errors_still_end_in_error_state() -> None:
    engine = Engine(QUERY, provider=_BrokenProvider(), runtime=ComputeRuntime("cpu", "torch"))
    with pytest.raises(EngineError, match="Run failed: socket closed"):
        engine.run()
    assert engine.status is EngineStatus.ERROR
    assert engine.output.kind is OutputKind.ERROR
    assert "socket closed" in engine.output.message
