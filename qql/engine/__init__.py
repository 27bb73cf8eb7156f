"""Query execution: dispatch, trade simulation, graph building, engine facade."""

from __future__ import annotations

__all__: list[str] = []
