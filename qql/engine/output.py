"""Run results exposed by the engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import pandas as pd

from qql.engine.graph import Graph
from qql.engine.trade import TradeRect, TradeSummary


class EngineStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


class OutputKind(str, Enum):
    PENDING = "pending"
    DATA = "data"
    ERROR = "error"
    NONE = "none"


@dataclass
class Trades:
    trades_table: pd.DataFrame
    ledger: pd.DataFrame
    trades_graph: list[TradeRect]
    trade_summary: TradeSummary
    over_frame: str


@dataclass
class Data:
    tables: dict[str, pd.DataFrame] = field(default_factory=dict)
    graph: Optional[Graph] = None
    trades: Optional[Trades] = None


@dataclass
class Output:
    kind: OutputKind
    data: Optional[Data] = None
    message: Optional[str] = None

    @classmethod
    def pending(cls) -> "Output":
        return cls(OutputKind.PENDING)

    @classmethod
    def ready(cls, data: Data) -> "Output":
        return cls(OutputKind.DATA, data=data)

    @classmethod
    def error(cls, message: str) -> "Output":
        return cls(OutputKind.ERROR, message=message)

    @classmethod
    def none(cls) -> "Output":
        return cls(OutputKind.NONE)
