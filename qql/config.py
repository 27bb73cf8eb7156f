from __future__ import annotations

from dataclasses import dataclass


@dataclass
class EngineConfig:
    """Configuration for an engine run."""

    # Compute
    device: str | None = None            # None -> auto (cuda, mps, cpu)
    backend: str = "auto"                # auto | torch | triton
    workgroup_size: int = 256
    elems_per_invocation: int = 1

    # Calculation defaults
    default_period: int = 14

    # [CHOICE] annualization factor for volatility
    # [FORMULA] vol = std(log returns) * sqrt(annualization_days)
    # [NOTES] 252 trading days per year.
    annualization_days: int = 252

    # Parsing
    strict_sections: bool = False        # re-raise errors inside GRAPH / TRADE

    # Logging
    verbose: bool = False

    def __post_init__(self) -> None:
        if self.backend not in ("auto", "torch", "triton"):
            raise ValueError(f"unknown backend {self.backend!r}")
        if self.workgroup_size <= 0 or self.elems_per_invocation <= 0:
            raise ValueError("workgroup_size and elems_per_invocation must be positive")
        if self.default_period < 1:
            raise ValueError("default_period must be >= 1")
