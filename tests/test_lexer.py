"""Lexer: classification, positions, comments and error reporting."""

from __future__ import annotations

import pytest

from qql.errors import LexError
from qql.language.lexer import Keyword, Lexer, TokenKind, tokenize


def _kinds(source: str) -> list[TokenKind]:
    return [t.kind for t in tokenize(source)]


def test_keywords_are_case_insensitive() -> None:
    toks = tokenize("frame Pull CALC")
    assert [t.value for t in toks[:3]] == [Keyword.FRAME, Keyword.PULL, Keyword.CALC]
    assert all(t.kind is TokenKind.KEYWORD for t in toks[:3])


def test_word_classification_order() -> None:
    toks = tokenize("20240101 5m 30d 123 1234567 202401011 aapl.close close_1 0.5")
    got = [(t.kind, t.value) for t in toks[:-1]]
    assert got == [
        (TokenKind.LITERAL, "20240101"),
        (TokenKind.LITERAL, "5m"),
        (TokenKind.LITERAL, "30d"),
        (TokenKind.IDENTIFIER, "123"),
        (TokenKind.IDENTIFIER, "1234567"),
        (TokenKind.IDENTIFIER, "202401011"),
        (TokenKind.IDENTIFIER, "aapl.close"),
        (TokenKind.IDENTIFIER, "close_1"),
        (TokenKind.IDENTIFIER, "0.5"),
    ]


def test_commas_and_newlines_are_tokens() -> None:
    assert _kinds("a, b\nc") == [
        TokenKind.IDENTIFIER,
        TokenKind.COMMA,
        TokenKind.IDENTIFIER,
        TokenKind.NEWLINE,
        TokenKind.IDENTIFIER,
        TokenKind.EOF,
    ]


def test_positions_are_one_based_and_reset_on_newline() -> None:
    toks = tokenize("FRAME a\n  PULL x")
    frame, a, nl, pull, x, eof = toks
    assert (frame.line, frame.column) == (1, 1)
    assert (a.line, a.column) == (1, 7)
    assert (nl.line, nl.column) == (1, 8)
    assert (pull.line, pull.column) == (2, 3)
    assert (x.line, x.column) == (2, 8)
    assert eof.kind is TokenKind.EOF


def test_comment_runs_to_end_of_line() -> None:
    toks = tokenize("PULL close -- the close  \nCALC")
    assert [t.kind for t in toks] == [
        TokenKind.KEYWORD,
        TokenKind.IDENTIFIER,
        TokenKind.COMMENT,
        TokenKind.NEWLINE,
        TokenKind.KEYWORD,
        TokenKind.EOF,
    ]
    comment = toks[2]
    assert comment.value == " the close"
    assert comment.column == 12
    assert (toks[4].line, toks[4].column) == (2, 1)


def test_single_dash_is_an_error() -> None:
    with pytest.raises(LexError) as exc:
        tokenize("a - b")
    assert exc.value.message == "Unexpected single '-'"
    assert (exc.value.line, exc.value.column) == (1, 3)


def test_unexpected_character() -> None:
    with pytest.raises(LexError) as exc:
        tokenize("PULL\n close @")
    assert exc.value.message == "Unexpected character '@'"
    assert (exc.value.line, exc.value.column) == (2, 8)


def test_eof_is_sticky() -> None:
    lexer = Lexer("x")
    assert lexer.next_token().kind is TokenKind.IDENTIFIER
    assert lexer.next_token().kind is TokenKind.EOF
    assert lexer.next_token().kind is TokenKind.EOF


def test_round_trip_through_source_text() -> None:
    source = (
        "FRAME f -- daily\n"
        "HISTORICAL TICKER aapl FROM 20240101 TO 20240201\n"
        "PULL timestamp, close\n"
        "CALC close, 5 SMA CALLED sma5\n"
    )
    first = tokenize(source)
    rebuilt = " ".join(t.source_text() for t in first)
    second = tokenize(rebuilt)
    assert [(t.kind, t.value) for t in first] == [(t.kind, t.value) for t in second]


def test_token_descriptions() -> None:
    kw, ident, lit, comma, nl, eof = tokenize("FRAME f 20240101,\n")
    assert kw.describe() == "keyword FRAME"
    assert kw.source_text() == "FRAME"
    assert ident.describe() == "identifier 'f'"
    assert lit.describe() == "literal '20240101'"
    assert comma.describe() == "comma"
    assert nl.describe() == "newline"
    assert eof.describe() == "eof"
