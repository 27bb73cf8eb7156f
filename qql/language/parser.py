"""Recursive-descent parser for QQL.

Grammar (newlines and comments may appear between productions):

    Query        := Frame* GraphSection? TradeSection?
    Frame        := FRAME ident ModelSection ActionSection
    ModelSection := (LIVE|HISTORICAL|FUNDAMENTAL) TICKER ident TimeSpec
    TimeSpec     := FROM date TO date | TICK interval FOR interval
    ActionSection:= PULL ident (, ident)* Calc*
    Calc         := CALC operand (, operand)* Operation CALLED ident
    GraphSection := GRAPH XAXIS ident DrawCommand*
    DrawCommand  := LINE ident (, ident)* FOR ident
                  | BAR ident FOR ident
                  | CANDLE ident sep ident sep ident sep ident FOR ident
    TradeSection := TRADE TradeType OVER_FRAME ident
                    ENTRY ref (, ref)* , num
                    EXIT ref (, ref)* , num
                    LIMIT num HOLD int

GRAPH and TRADE are optional. In lenient mode (the default) a failure inside
either is logged and recorded on the Query as INVALID; the section is then
skipped. `strict=True` re-raises.
"""

from __future__ import annotations

from typing import Callable, Optional, TypeVar

from qql.console import console
from qql.errors import LexError, ParseError
from qql.language.ast import (
    ActionSection,
    Bar,
    Calc,
    Candle,
    DateRange,
    DrawCommand,
    Frame,
    GraphSection,
    Line,
    LiveSpec,
    ModelSection,
    ModelType,
    Operation,
    Query,
    SectionStatus,
    TradeSection,
    TradeType,
)
from qql.language.lexer import Keyword, Lexer, Token, TokenKind, is_date_literal, is_interval_literal

_T = TypeVar("_T")

_MODEL_TYPES = {
    Keyword.LIVE: ModelType.LIVE,
    Keyword.HISTORICAL: ModelType.HISTORICAL,
    Keyword.FUNDAMENTAL: ModelType.FUNDAMENTAL,
}

_OPERATIONS = {Keyword(op.value): op for op in Operation}

_TRADE_TYPES = {
    Keyword.OPTIONCALL: TradeType.OPTIONCALL,
    Keyword.OPTIONPUT: TradeType.OPTIONPUT,
    Keyword.STOCK: TradeType.STOCK,
}


class Parser:
    """One-token-lookahead parser over a `Lexer` stream."""

    def __init__(self, source: str, *, strict: bool = False) -> None:
        self._lexer = Lexer(source)
        self._strict = bool(strict)
        self._tok = self._lex()

    # ------------------------------------------------------------------
    # Token plumbing
    # ------------------------------------------------------------------

    def _lex(self) -> Token:
        try:
            return self._lexer.next_token()
        except LexError as e:
            raise ParseError(e.message, e.line, e.column) from e

    def _advance(self) -> Token:
        tok = self._tok
        self._tok = self._lex()
        return tok

    def _error(self, expected: str, tok: Optional[Token] = None) -> ParseError:
        tok = tok or self._tok
        return ParseError(f"expected {expected} but found {tok.describe()}", tok.line, tok.column)

    def _at_keyword(self, *kws: Keyword) -> bool:
        return self._tok.kind is TokenKind.KEYWORD and self._tok.value in kws

    def consume_newlines(self) -> None:
        while self._tok.kind in (TokenKind.NEWLINE, TokenKind.COMMENT):
            self._advance()

    def expect_keyword(self, kw: Keyword) -> Token:
        if not self._at_keyword(kw):
            raise self._error(kw.value)
        return self._advance()

    def expect_identifier(self) -> str:
        if self._tok.kind is not TokenKind.IDENTIFIER:
            raise self._error("identifier")
        return str(self._advance().value)

    def expect_literal(self, what: str, check: Callable[[str], bool]) -> str:
        tok = self._tok
        if tok.kind is not TokenKind.LITERAL or not check(str(tok.value)):
            raise self._error(what)
        return str(self._advance().value)

    def _expect_operand(self) -> Token:
        if self._tok.kind not in (TokenKind.IDENTIFIER, TokenKind.LITERAL):
            raise self._error("identifier or literal")
        return self._advance()

    def _identifier_list(self) -> tuple[str, ...]:
        items = [self.expect_identifier()]
        while self._tok.kind is TokenKind.COMMA:
            self._advance()
            self.consume_newlines()
            items.append(self.expect_identifier())
        return tuple(items)

    def _operand_list(self) -> list[Token]:
        items = [self._expect_operand()]
        while self._tok.kind is TokenKind.COMMA:
            self._advance()
            self.consume_newlines()
            items.append(self._expect_operand())
        return items

    @staticmethod
    def _to_float(tok: Token) -> float:
        try:
            return float(str(tok.value))
        except ValueError:
            raise ParseError(f"expected number but found {tok.describe()}", tok.line, tok.column) from None

    @staticmethod
    def _to_int(tok: Token) -> int:
        try:
            return int(str(tok.value))
        except ValueError:
            raise ParseError(f"expected integer but found {tok.describe()}", tok.line, tok.column) from None

    # ------------------------------------------------------------------
    # Productions
    # ------------------------------------------------------------------

    def parse(self) -> Query:
        frames: dict[str, Frame] = {}
        self.consume_newlines()
        while self._at_keyword(Keyword.FRAME):
            name_tok = self._tok
            frame = self._frame()
            if frame.name in frames:
                raise ParseError(f"duplicate frame '{frame.name}'", name_tok.line, name_tok.column)
            frames[frame.name] = frame
            self.consume_newlines()

        graph, graph_status, graph_error = None, SectionStatus.ABSENT, None
        if self._at_keyword(Keyword.GRAPH):
            graph, graph_status, graph_error = self._optional("GRAPH", self._graph_section, Keyword.TRADE)
            self.consume_newlines()

        trade, trade_status, trade_error = None, SectionStatus.ABSENT, None
        if self._at_keyword(Keyword.TRADE):
            trade, trade_status, trade_error = self._optional("TRADE", self._trade_section)
            self.consume_newlines()

        if self._tok.kind is not TokenKind.EOF:
            if graph_status is SectionStatus.ABSENT and trade_status is SectionStatus.ABSENT:
                raise self._error("FRAME, GRAPH, TRADE or end of input")
            raise self._error("end of input")

        return Query(
            frames=frames,
            graph=graph,
            trade=trade,
            graph_status=graph_status,
            trade_status=trade_status,
            graph_error=graph_error,
            trade_error=trade_error,
        )

    def _optional(
        self,
        label: str,
        production: Callable[[], _T],
        resume_at: Optional[Keyword] = None,
    ) -> tuple[Optional[_T], SectionStatus, Optional[ParseError]]:
        try:
            return production(), SectionStatus.PRESENT, None
        except ParseError as e:
            if self._strict:
                raise
            console.warn(f"{label} section ignored", detail=str(e))
            self._skip_until(resume_at)
            return None, SectionStatus.INVALID, e

    def _skip_until(self, kw: Optional[Keyword]) -> None:
        while self._tok.kind is not TokenKind.EOF:
            if kw is not None and self._at_keyword(kw):
                return
            try:
                self._tok = self._lexer.next_token()
            except LexError:
                # Already inside an invalid section; keep scanning.
                continue

    def _frame(self) -> Frame:
        self.expect_keyword(Keyword.FRAME)
        name = self.expect_identifier()
        self.consume_newlines()
        model = self._model_section()
        action = self._action_section()
        return Frame(name=name, model=model, action=action)

    def _model_section(self) -> ModelSection:
        tok = self._tok
        if tok.kind is not TokenKind.KEYWORD or tok.value not in _MODEL_TYPES:
            raise self._error("LIVE, HISTORICAL or FUNDAMENTAL")
        self._advance()
        model_type = _MODEL_TYPES[tok.value]  # type: ignore[index]
        self.consume_newlines()
        self.expect_keyword(Keyword.TICKER)
        ticker = self.expect_identifier()
        self.consume_newlines()
        if self._at_keyword(Keyword.FROM):
            self._advance()
            start = self.expect_literal("date", is_date_literal)
            self.expect_keyword(Keyword.TO)
            end = self.expect_literal("date", is_date_literal)
            spec: DateRange | LiveSpec = DateRange(start=start, end=end)
        elif self._at_keyword(Keyword.TICK):
            self._advance()
            interval = self.expect_literal("interval", is_interval_literal)
            self.expect_keyword(Keyword.FOR)
            duration = self.expect_literal("interval", is_interval_literal)
            spec = LiveSpec(interval=interval, duration=duration)
        else:
            raise self._error("FROM or TICK")
        self.consume_newlines()
        return ModelSection(model_type=model_type, ticker=ticker, time_spec=spec)

    def _action_section(self) -> ActionSection:
        self.expect_keyword(Keyword.PULL)
        fields = self._identifier_list()
        self.consume_newlines()
        calcs: list[Calc] = []
        seen: set[str] = set()
        while self._at_keyword(Keyword.CALC):
            calc, alias_tok = self._calc()
            if calc.alias in seen:
                raise ParseError(f"duplicate alias '{calc.alias}'", alias_tok.line, alias_tok.column)
            seen.add(calc.alias)
            calcs.append(calc)
            self.consume_newlines()
        return ActionSection(fields=fields, calcs=tuple(calcs))

    def _calc(self) -> tuple[Calc, Token]:
        self.expect_keyword(Keyword.CALC)
        inputs = tuple(str(t.value) for t in self._operand_list())
        tok = self._tok
        if tok.kind is not TokenKind.KEYWORD or tok.value not in _OPERATIONS:
            raise self._error("operation")
        self._advance()
        self.expect_keyword(Keyword.CALLED)
        alias_tok = self._tok
        alias = self.expect_identifier()
        return Calc(inputs=inputs, operation=_OPERATIONS[tok.value], alias=alias), alias_tok  # type: ignore[index]

    def _graph_section(self) -> GraphSection:
        self.expect_keyword(Keyword.GRAPH)
        self.consume_newlines()
        self.expect_keyword(Keyword.XAXIS)
        xaxis = self.expect_identifier()
        self.consume_newlines()
        commands: list[DrawCommand] = []
        while self._at_keyword(Keyword.LINE, Keyword.BAR, Keyword.CANDLE):
            commands.append(self._draw_command())
            self.consume_newlines()
        return GraphSection(xaxis=xaxis, commands=tuple(commands))

    def _draw_command(self) -> DrawCommand:
        kw = self._advance().value
        if kw is Keyword.LINE:
            series = self._identifier_list()
            self.expect_keyword(Keyword.FOR)
            return Line(series=series, frame=self.expect_identifier())
        if kw is Keyword.BAR:
            y = self.expect_identifier()
            self.expect_keyword(Keyword.FOR)
            return Bar(y=y, frame=self.expect_identifier())
        ohlc = [self.expect_identifier()]
        for _ in range(3):
            if self._tok.kind not in (TokenKind.COMMA, TokenKind.NEWLINE):
                raise self._error("',' or newline")
            self._advance()
            self.consume_newlines()
            ohlc.append(self.expect_identifier())
        self.consume_newlines()
        self.expect_keyword(Keyword.FOR)
        o, h, l, c = ohlc
        return Candle(open=o, high=h, low=l, close=c, frame=self.expect_identifier())

    def _threshold_list(self, clause: Keyword) -> tuple[tuple[str, ...], float]:
        self.expect_keyword(clause)
        items = self._operand_list()
        if len(items) < 2:
            raise self._error(f"at least one reference and a threshold after {clause.value}", items[0])
        return tuple(str(t.value) for t in items[:-1]), self._to_float(items[-1])

    def _trade_section(self) -> TradeSection:
        self.expect_keyword(Keyword.TRADE)
        tok = self._tok
        if tok.kind is not TokenKind.KEYWORD or tok.value not in _TRADE_TYPES:
            raise self._error("OPTIONCALL, OPTIONPUT or STOCK")
        self._advance()
        trade_type = _TRADE_TYPES[tok.value]  # type: ignore[index]
        self.consume_newlines()
        self.expect_keyword(Keyword.OVER_FRAME)
        over_frame = self.expect_identifier()
        self.consume_newlines()
        entry, within_entry = self._threshold_list(Keyword.ENTRY)
        self.consume_newlines()
        exit_, within_exit = self._threshold_list(Keyword.EXIT)
        self.consume_newlines()
        self.expect_keyword(Keyword.LIMIT)
        stop_loss = self._to_float(self._expect_operand())
        self.consume_newlines()
        self.expect_keyword(Keyword.HOLD)
        hold = self._to_int(self._expect_operand())
        return TradeSection(
            trade_type=trade_type,
            over_frame=over_frame,
            entry=entry,
            within_entry=within_entry,
            exit=exit_,
            within_exit=within_exit,
            stop_loss=stop_loss,
            hold=hold,
        )


def parse(source: str, *, strict: bool = False) -> Query:
    """Parse QQL source into a `Query`."""
    return Parser(source, strict=strict).parse()
