"""Kernel registry and backend selection.

Policy:
- `auto` picks Triton when CUDA and Triton are both present, else torch.
- Asking for Triton without CUDA + Triton fails loudly.
- The detected capabilities are logged exactly once per process.
"""

from __future__ import annotations

from dataclasses import dataclass

import torch

from qql.console import console
from qql.errors import KernelError
from qql.kernels.runtime import mps_available, triton_supported

BACKENDS = ("torch", "triton")

# Kernel library package per backend.
LIBRARY_PACKAGES = {
    "torch": "qql.kernels.portable",
    "triton": "qql.kernels.triton",
}


@dataclass(frozen=True, slots=True)
class KernelRegistry:
    cuda_available: bool
    mps_available: bool
    triton_available: bool

    @property
    def default_backend(self) -> str:
        return "triton" if (self.cuda_available and self.triton_available) else "torch"


_REGISTRY: KernelRegistry | None = None
_LOGGED: bool = False


def _cuda_device_summary() -> str:
    if not torch.cuda.is_available():
        return "CUDA unavailable"
    idx = int(torch.cuda.current_device())
    name = str(torch.cuda.get_device_name(idx))
    cap = ".".join(str(x) for x in torch.cuda.get_device_capability(idx))
    return f"{name} (sm_{cap})"


def initialize_kernels() -> KernelRegistry:
    """Detect kernel backends (idempotent)."""
    global _REGISTRY, _LOGGED
    if _REGISTRY is not None:
        return _REGISTRY

    _REGISTRY = KernelRegistry(
        cuda_available=bool(torch.cuda.is_available()),
        mps_available=mps_available(),
        triton_available=triton_supported(),
    )
    if not _LOGGED:
        _LOGGED = True
        console.info(
            f"Kernel backend: {_REGISTRY.default_backend}",
            detail=f"{_cuda_device_summary()}, mps={_REGISTRY.mps_available}, triton={_REGISTRY.triton_available}",
        )
    return _REGISTRY


def select_backend(requested: str, device: torch.device) -> str:
    """Resolve `auto`/`torch`/`triton` against what this process can run."""
    reg = initialize_kernels()
    if requested == "auto":
        if device.type == "cuda" and reg.triton_available:
            return "triton"
        return "torch"
    if requested not in BACKENDS:
        raise KernelError(f"unknown backend '{requested}' (expected one of {', '.join(BACKENDS)})")
    if requested == "triton":
        if not reg.triton_available:
            raise KernelError("backend 'triton' requested but Triton is not installed")
        if device.type != "cuda":
            raise KernelError(f"backend 'triton' requires a CUDA device, got '{device}'")
    return requested
