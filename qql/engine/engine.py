"""Engine facade: source text in, `Output` out.

    engine = Engine(source, provider=InMemoryProvider({"AAPL": df}))
    out = engine.run()
    out.data.tables["f"]

Run order: parse, pull every frame, resolve every frame (sanitize + dispatch),
simulate trades if a TRADE section is present, then build the graph if a
GRAPH section is present. Any failure aborts the run: the engine moves to
`EngineStatus.ERROR`, `output` becomes `Output.error(...)`, and the
`EngineError` propagates.
"""

from __future__ import annotations

from typing import Optional

import pandas as pd

from qql.config import EngineConfig
from qql.console import console
from qql.errors import DispatchError, EngineError, GraphError, KernelError, ParseError, ProviderError, TradeError
from qql.kernels.compute import ComputeRuntime
from qql.engine.dispatch import action_over_data
from qql.engine.graph import Graph, graph_over_data
from qql.engine.output import Data, EngineStatus, Output, Trades
from qql.engine.provider import DataProvider
from qql.engine.trade import trade_rectangles, trade_summary, trades_over_data
from qql.language.ast import Query, SectionStatus
from qql.language.parser import parse


class Engine:
    """Parses, pulls and resolves one QQL source at a time."""

    def __init__(
        self,
        source: str = "",
        provider: Optional[DataProvider] = None,
        config: Optional[EngineConfig] = None,
        runtime: Optional[ComputeRuntime] = None,
    ) -> None:
        self.source = source
        self.provider = provider
        self.config = config or EngineConfig()
        self._runtime = runtime
        self.status = EngineStatus.STOPPED
        self.output = Output.none()
        self.query: Optional[Query] = None

    @property
    def runtime(self) -> ComputeRuntime:
        if self._runtime is None:
            self._runtime = ComputeRuntime(self.config.device, self.config.backend, verbose=self.config.verbose)
        return self._runtime

    def set_source(self, source: str) -> None:
        self.source = source
        self.query = None

    def analyze(self) -> Query:
        """Parse the current source; raises `EngineError` with line/column."""
        try:
            query = parse(self.source, strict=self.config.strict_sections)
        except ParseError as e:
            raise EngineError(f"Failed to parse query: {e.message}, line {e.line}, column {e.column}") from e
        for label, status, error in (
            ("GRAPH", query.graph_status, query.graph_error),
            ("TRADE", query.trade_status, query.trade_error),
        ):
            if status is SectionStatus.INVALID and self.config.verbose:
                console.warn(f"{label} section is invalid", detail=str(error))
        self.query = query
        return query

    def _fail(self, message: str) -> EngineError:
        self.status = EngineStatus.ERROR
        self.output = Output.error(message)
        console.error("Run failed", detail=message)
        return EngineError(message)

    def run(self) -> Output:
        self.status = EngineStatus.RUNNING
        self.output = Output.pending()
        try:
            return self._execute()
        except EngineError:
            raise
        except Exception as e:
            raise self._fail(f"Run failed: {e}") from e

    def _execute(self) -> Output:
        try:
            query = self.analyze()
        except EngineError as e:
            raise self._fail(str(e)) from e.__cause__

        if not query.frames:
            self.status = EngineStatus.STOPPED
            self.output = Output.none()
            return self.output

        console.info(
            f"Running {len(query.frames)} frame(s)",
            detail=f"graph={query.graph_status.value} trade={query.trade_status.value}",
        )

        if self.provider is None:
            raise self._fail("Failed to fetch data: no data provider configured")
        try:
            requests = query.requests()
            pulled = self.provider.fetch(requests)
        except ParseError as e:
            raise self._fail(f"Failed to parse query: {e.message}") from e
        except ProviderError as e:
            raise self._fail(f"Failed to fetch data: {e}") from e

        try:
            runtime = self.runtime
        except KernelError as e:
            raise self._fail(f"Failed to initialize compute runtime: {e}") from e

        tables: dict[str, pd.DataFrame] = {}
        for name, frame in query.frames.items():
            if name not in pulled:
                raise self._fail(f"Failed to fetch data: provider returned nothing for frame '{name}'")
            try:
                tables[name] = action_over_data(frame.action, pulled[name], runtime, self.config)
            except (DispatchError, KernelError) as e:
                raise self._fail(f"Failed to compute frame '{name}': {e}") from e

        trades: Optional[Trades] = None
        if query.trade is not None:
            section = query.trade
            try:
                outcome = trades_over_data(section, tables)
                over = tables[section.over_frame]
                trades = Trades(
                    trades_table=outcome.table,
                    ledger=outcome.ledger,
                    trades_graph=trade_rectangles(section, outcome.table, over),
                    trade_summary=trade_summary(section, outcome.table, over),
                    over_frame=section.over_frame,
                )
            except TradeError as e:
                raise self._fail(f"Failed to simulate trades: {e}") from e

        graph: Optional[Graph] = None
        if query.graph is not None:
            try:
                graph = graph_over_data(
                    query.graph,
                    tables,
                    ledger=trades.ledger if trades is not None else None,
                    over_frame=trades.over_frame if trades is not None else None,
                )
            except GraphError as e:
                raise self._fail(f"Failed to build graph: {e}") from e

        self.status = EngineStatus.STOPPED
        self.output = Output.ready(Data(tables=tables, graph=graph, trades=trades))
        console.success("Run complete", detail=", ".join(f"{k}: {len(v)} rows" for k, v in tables.items()))
        return self.output
