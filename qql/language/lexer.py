"""Hand-written lexer for QQL.

Tokens are produced lazily, one per `next_token()` call. Whitespace (space,
tab, CR) is skipped; newlines and commas are significant and become tokens.
`--` starts a comment that runs to the end of the line.

Words are maximal runs of ASCII alphanumerics, `.` and `_` starting with an
alphanumeric, classified in order:
- exactly 8 digits            -> date literal (YYYYMMDD)
- digits + one of s/m/h/d     -> interval literal (e.g. `5m`, `30d`)
- reserved keyword (any case) -> keyword
- anything else               -> identifier (`frame.column` stays one word)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Union

from qql.errors import LexError


class Keyword(str, Enum):
    LIVE = "LIVE"
    HISTORICAL = "HISTORICAL"
    FUNDAMENTAL = "FUNDAMENTAL"
    TICKER = "TICKER"
    FROM = "FROM"
    TO = "TO"
    TICK = "TICK"
    FOR = "FOR"
    PULL = "PULL"
    CALC = "CALC"
    CALLED = "CALLED"
    DIFFERENCE = "DIFFERENCE"
    SUM = "SUM"
    MULTIPLY = "MULTIPLY"
    DIVIDE = "DIVIDE"
    SMA = "SMA"
    VOLATILITY = "VOLATILITY"
    DOUBLE_VOLATILITY = "DOUBLE_VOLATILITY"
    CONSTANT = "CONSTANT"
    LINEAR_REGRESSION = "LINEAR_REGRESSION"
    GRAPH = "GRAPH"
    XAXIS = "XAXIS"
    LINE = "LINE"
    BAR = "BAR"
    CANDLE = "CANDLE"
    TRADE = "TRADE"
    OPTIONCALL = "OPTIONCALL"
    OPTIONPUT = "OPTIONPUT"
    STOCK = "STOCK"
    OVER_FRAME = "OVER_FRAME"
    ENTRY = "ENTRY"
    EXIT = "EXIT"
    LIMIT = "LIMIT"
    HOLD = "HOLD"
    FRAME = "FRAME"


_KEYWORDS: dict[str, Keyword] = {k.value: k for k in Keyword}

INTERVAL_UNITS = ("s", "m", "h", "d")


class TokenKind(Enum):
    KEYWORD = "keyword"
    IDENTIFIER = "identifier"
    LITERAL = "literal"
    COMMA = "comma"
    NEWLINE = "newline"
    COMMENT = "comment"
    EOF = "eof"


@dataclass(frozen=True, slots=True)
class Token:
    kind: TokenKind
    value: Union[Keyword, str, None]
    line: int
    column: int

    def describe(self) -> str:
        """Human readable form used in parse error messages."""
        if self.kind is TokenKind.KEYWORD and isinstance(self.value, Keyword):
            return f"keyword {self.value.value}"
        if self.kind is TokenKind.IDENTIFIER:
            return f"identifier '{self.value}'"
        if self.kind is TokenKind.LITERAL:
            return f"literal '{self.value}'"
        if self.kind is TokenKind.COMMENT:
            return "comment"
        return self.kind.value

    def source_text(self) -> str:
        """Text that re-lexes to an equivalent token."""
        if self.kind is TokenKind.KEYWORD and isinstance(self.value, Keyword):
            return self.value.value
        if self.kind is TokenKind.COMMA:
            return ","
        if self.kind is TokenKind.NEWLINE:
            return "\n"
        if self.kind is TokenKind.COMMENT:
            return f"--{self.value}"
        if self.kind is TokenKind.EOF:
            return ""
        return str(self.value)


def is_date_literal(word: str) -> bool:
    return len(word) == 8 and word.isascii() and word.isdigit()


def is_interval_literal(word: str) -> bool:
    if len(word) < 2 or word[-1] not in INTERVAL_UNITS:
        return False
    digits = word[:-1]
    return digits.isascii() and digits.isdigit()


def _is_word_start(ch: str) -> bool:
    return ch.isascii() and ch.isalnum()


def _is_word_char(ch: str) -> bool:
    return (ch.isascii() and ch.isalnum()) or ch in "._"


class Lexer:
    """Streaming tokenizer over a QQL source string."""

    __slots__ = ("_src", "_pos", "_line", "_col")

    def __init__(self, source: str) -> None:
        self._src = source
        self._pos = 0
        self._line = 1
        self._col = 0

    @property
    def line(self) -> int:
        return self._line

    @property
    def column(self) -> int:
        return self._col + 1

    def _peek(self, offset: int = 0) -> str:
        i = self._pos + offset
        return self._src[i] if i < len(self._src) else ""

    def _advance(self) -> str:
        ch = self._src[self._pos]
        self._pos += 1
        self._col += 1
        return ch

    def next_token(self) -> Token:
        while self._peek() in (" ", "\t", "\r"):
            self._advance()

        line, col = self._line, self._col + 1
        ch = self._peek()
        if ch == "":
            return Token(TokenKind.EOF, None, line, col)

        if ch == "\n":
            self._pos += 1
            self._line += 1
            self._col = 0
            return Token(TokenKind.NEWLINE, None, line, col)

        if ch == ",":
            self._advance()
            return Token(TokenKind.COMMA, None, line, col)

        if ch == "-":
            if self._peek(1) != "-":
                self._advance()
                raise LexError("Unexpected single '-'", line, col)
            self._advance()
            self._advance()
            start = self._pos
            while self._peek() not in ("", "\n"):
                self._advance()
            return Token(TokenKind.COMMENT, self._src[start:self._pos].rstrip(), line, col)

        if _is_word_start(ch):
            start = self._pos
            while self._peek() != "" and _is_word_char(self._peek()):
                self._advance()
            return self._classify(self._src[start:self._pos], line, col)

        self._advance()
        raise LexError(f"Unexpected character '{ch}'", line, col)

    @staticmethod
    def _classify(word: str, line: int, col: int) -> Token:
        if is_date_literal(word) or is_interval_literal(word):
            return Token(TokenKind.LITERAL, word, line, col)
        kw = _KEYWORDS.get(word.upper())
        if kw is not None:
            return Token(TokenKind.KEYWORD, kw, line, col)
        return Token(TokenKind.IDENTIFIER, word, line, col)

    def __iter__(self) -> Iterator[Token]:
        while True:
            tok = self.next_token()
            yield tok
            if tok.kind is TokenKind.EOF:
                return


def tokenize(source: str) -> list[Token]:
    """Lex a whole source string, EOF token included."""
    return list(Lexer(source))
