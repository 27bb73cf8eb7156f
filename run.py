#!/usr/bin/env python3
"""QQL Engine Entrypoint

Runs a QQL query file against a directory of `<TICKER>.csv` files and prints
the resolved frames, trade summary and graph extent.

Usage:
    python run.py query.qql --data ./data              # Run with defaults
    python run.py query.qql --data ./data --strict     # Fail on bad GRAPH/TRADE
    python run.py query.qql --data ./data --backend torch --device cpu
    python run.py query.qql --data ./data --rows 20    # Preview more rows
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from qql.config import EngineConfig
from qql.console import console
from qql.engine.engine import Engine
from qql.engine.provider import CsvProvider
from qql.errors import EngineError, ProviderError


def main() -> int:
    parser = argparse.ArgumentParser(
        description="QQL query engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument("query", type=Path, help="Path to a .qql file")
    parser.add_argument("--data", type=Path, required=True, help="Directory holding <TICKER>.csv files")
    parser.add_argument("--device", type=str, default=None, help="Device (cuda, mps, cpu)")
    parser.add_argument("--backend", choices=("auto", "torch", "triton"), default="auto", help="Kernel backend")
    parser.add_argument("--workgroup-size", type=int, default=256, help="Kernel workgroup size (default: 256)")
    parser.add_argument("--period", type=int, default=14, help="Default SMA/volatility period (default: 14)")
    parser.add_argument("--strict", action="store_true", help="Treat errors in GRAPH/TRADE sections as fatal")
    parser.add_argument("--rows", type=int, default=5, help="Rows to preview per frame (default: 5)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log every kernel step")

    args = parser.parse_args()

    try:
        config = EngineConfig(
            device=args.device,
            backend=args.backend,
            workgroup_size=args.workgroup_size,
            default_period=args.period,
            strict_sections=args.strict,
            verbose=args.verbose,
        )
    except ValueError as e:
        console.error("Bad configuration", detail=str(e))
        return 2

    try:
        provider = CsvProvider(args.data)
    except ProviderError as e:
        console.error("Bad data directory", detail=str(e))
        return 2

    engine = Engine(args.query.read_text(), provider=provider, config=config)
    console.header("QQL", query=str(args.query), data=str(args.data), backend=config.backend)
    try:
        with console.spinner("Running query..."):
            output = engine.run()
    except EngineError:
        return 1

    if output.data is None:
        console.warn("Query has no frames")
        return 0

    for name, table in output.data.tables.items():
        head = table.head(args.rows)
        console.table(
            f"{name} ({len(table)} rows)",
            [str(c) for c in head.columns],
            [[f"{v:.4f}" if isinstance(v, float) else str(v) for v in row] for row in head.itertuples(index=False)],
        )

    trades = output.data.trades
    if trades is not None:
        s = trades.trade_summary
        console.success(
            f"{s.total_trades} trade(s) over {trades.over_frame}",
            detail=f"win rate {s.win_rate:.1f}%, avg win/1000 {s.avg_win_per_1000:.2f}, avg loss/1000 {s.avg_loss_per_1000:.2f}",
        )

    graph = output.data.graph
    if graph is not None:
        console.info(graph.title, detail=f"{len(graph.data)} series, y in [{graph.min():.4f}, {graph.max():.4f}]")
    return 0


if __name__ == "__main__":
    sys.exit(main())
