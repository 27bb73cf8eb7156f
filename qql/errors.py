"""Exception hierarchy for the QQL engine.

Errors are raised where they are detected and only converted into an
`Output.error(...)` at the `Engine` boundary.
"""

from __future__ import annotations


class QQLError(Exception):
    """Base class for every engine error."""


class _PositionedError(QQLError):
    def __init__(self, message: str, line: int, column: int) -> None:
        super().__init__(f"{message}, line {line}, column {column}")
        self.message = message
        self.line = int(line)
        self.column = int(column)


class LexError(_PositionedError):
    pass


class ParseError(_PositionedError):
    pass


class KernelError(QQLError):
    """Compute runtime contract violation."""


class DispatchError(QQLError):
    """A Calc could not be mapped to, or executed by, a backend."""


class TradeError(QQLError):
    pass


class GraphError(QQLError):
    pass


class ProviderError(QQLError):
    """Data pull failed; aborts a run before any Calc."""


class EngineError(QQLError):
    pass
