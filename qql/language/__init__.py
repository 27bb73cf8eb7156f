"""QQL language front end: lexer, AST and parser."""

from __future__ import annotations

__all__: list[str] = []
