"""QQL query/compute engine.

Layout:
- `qql.language` holds the lexer, AST and recursive-descent parser.
- `qql.kernels` owns the compute runtime (device, kernel cache, declarative
  kernel pipelines) plus the torch and Triton kernel libraries.
- `qql.engine` turns a parsed query into resolved tables, trade ledgers and
  drawable graph primitives.

Keep this module light: importing `qql` should not touch torch device state.
"""

from __future__ import annotations

__all__ = [
    "Engine",
    "EngineConfig",
    "parse",
]


def __getattr__(name: str):  # pragma: no cover
    if name == "Engine":
        from .engine.engine import Engine as _Engine

        return _Engine
    if name == "EngineConfig":
        from .config import EngineConfig as _EngineConfig

        return _EngineConfig
    if name == "parse":
        from .language.parser import parse as _parse

        return _parse
    raise AttributeError(name)
