"""Query AST produced by the parser.

A `Query` is built once per parse and replaced wholesale on re-parse, so every
node is frozen.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional, Union

from qql.errors import ParseError


class ModelType(str, Enum):
    LIVE = "LIVE"
    HISTORICAL = "HISTORICAL"
    FUNDAMENTAL = "FUNDAMENTAL"


class Operation(str, Enum):
    DIFFERENCE = "DIFFERENCE"
    SUM = "SUM"
    MULTIPLY = "MULTIPLY"
    DIVIDE = "DIVIDE"
    SMA = "SMA"
    VOLATILITY = "VOLATILITY"
    DOUBLE_VOLATILITY = "DOUBLE_VOLATILITY"
    CONSTANT = "CONSTANT"
    LINEAR_REGRESSION = "LINEAR_REGRESSION"


class TradeType(str, Enum):
    OPTIONCALL = "OPTIONCALL"
    OPTIONPUT = "OPTIONPUT"
    STOCK = "STOCK"


class SectionStatus(str, Enum):
    ABSENT = "absent"
    PRESENT = "present"
    INVALID = "invalid"


@dataclass(frozen=True, slots=True)
class DateRange:
    start: str  # YYYYMMDD
    end: str


@dataclass(frozen=True, slots=True)
class LiveSpec:
    interval: str  # e.g. 5m
    duration: str  # e.g. 1d


TimeSpec = Union[DateRange, LiveSpec]


@dataclass(frozen=True, slots=True)
class ModelSection:
    model_type: ModelType
    ticker: str
    time_spec: TimeSpec


def is_number(text: str) -> bool:
    try:
        float(text)
    except ValueError:
        return False
    return True


@dataclass(frozen=True, slots=True)
class Calc:
    inputs: tuple[str, ...]
    operation: Operation
    alias: str

    def column_inputs(self) -> tuple[str, ...]:
        """Inputs that name columns (numeric literals are parameters)."""
        return tuple(i for i in self.inputs if not is_number(i))


@dataclass(frozen=True, slots=True)
class ActionSection:
    fields: tuple[str, ...]
    calcs: tuple[Calc, ...] = ()

    def aliases(self) -> tuple[str, ...]:
        return tuple(c.alias for c in self.calcs)


@dataclass(frozen=True, slots=True)
class Frame:
    name: str
    model: ModelSection
    action: ActionSection


@dataclass(frozen=True, slots=True)
class Line:
    series: tuple[str, ...]
    frame: str
    name: str = "line"


@dataclass(frozen=True, slots=True)
class Bar:
    y: str
    frame: str
    name: str = "bar"


@dataclass(frozen=True, slots=True)
class Candle:
    open: str
    high: str
    low: str
    close: str
    frame: str
    name: str = "candle"


DrawCommand = Union[Line, Bar, Candle]


@dataclass(frozen=True, slots=True)
class GraphSection:
    xaxis: str
    commands: tuple[DrawCommand, ...] = ()


@dataclass(frozen=True, slots=True)
class TradeSection:
    trade_type: TradeType
    over_frame: str
    entry: tuple[str, ...]
    within_entry: float
    exit: tuple[str, ...]
    within_exit: float
    stop_loss: float
    hold: int


@dataclass(frozen=True, slots=True)
class QuoteRequest:
    """What a data provider needs to serve one frame."""

    ticker: str
    model_type: ModelType
    fields: tuple[str, ...]
    start: Optional[str] = None      # ISO-8601 (DateRange only)
    end: Optional[str] = None
    interval: Optional[str] = None   # LiveSpec only
    duration: Optional[str] = None


def date_to_iso(yyyymmdd: str) -> str:
    """`20240131` -> `2024-01-31T00:00:00Z`; raises ValueError on a bad date."""
    if len(yyyymmdd) != 8 or not yyyymmdd.isdigit():
        raise ValueError(f"invalid date '{yyyymmdd}'")
    d = date(int(yyyymmdd[:4]), int(yyyymmdd[4:6]), int(yyyymmdd[6:]))
    return f"{d.isoformat()}T00:00:00Z"


@dataclass(frozen=True, slots=True)
class Query:
    frames: dict[str, Frame] = field(default_factory=dict)
    graph: Optional[GraphSection] = None
    trade: Optional[TradeSection] = None
    graph_status: SectionStatus = SectionStatus.ABSENT
    trade_status: SectionStatus = SectionStatus.ABSENT
    graph_error: Optional[ParseError] = field(default=None, compare=False)
    trade_error: Optional[ParseError] = field(default=None, compare=False)

    def requests(self) -> dict[str, QuoteRequest]:
        out: dict[str, QuoteRequest] = {}
        for name, frame in self.frames.items():
            model = frame.model
            spec = model.time_spec
            if isinstance(spec, DateRange):
                try:
                    start, end = date_to_iso(spec.start), date_to_iso(spec.end)
                except ValueError as e:
                    raise ParseError(f"frame '{name}': {e}", 0, 0) from e
                out[name] = QuoteRequest(
                    ticker=model.ticker,
                    model_type=model.model_type,
                    fields=frame.action.fields,
                    start=start,
                    end=end,
                )
            else:
                out[name] = QuoteRequest(
                    ticker=model.ticker,
                    model_type=model.model_type,
                    fields=frame.action.fields,
                    interval=spec.interval,
                    duration=spec.duration,
                )
        return out
