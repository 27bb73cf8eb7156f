"""Backend availability detection (Triton + torch devices).

Triton kernels need CUDA; the portable torch kernels run anywhere torch does.
Detection is centralized here so the rest of the package never probes
accelerator state on its own.
"""

from __future__ import annotations

import importlib.util

import torch

__all__ = [
    "has_module",
    "triton_supported",
    "mps_available",
    "get_device",
    "synchronize",
]


def has_module(name: str) -> bool:
    try:
        return importlib.util.find_spec(name) is not None
    except (ImportError, ValueError, AttributeError):
        return False


def triton_supported() -> bool:
    return bool(has_module("triton") and has_module("triton.language"))


def mps_available() -> bool:
    backend = getattr(torch.backends, "mps", None)
    return bool(backend is not None and backend.is_available())


def get_device(preferred: str | torch.device | None = None) -> torch.device:
    """Resolve a device: explicit choice, else cuda, then mps, then cpu."""
    if preferred is not None:
        return torch.device(preferred)
    if torch.cuda.is_available():
        return torch.device("cuda")
    if mps_available():
        return torch.device("mps")
    return torch.device("cpu")


def synchronize(device: torch.device) -> None:
    """Block until all queued work on `device` has completed."""
    if device.type == "cuda":
        torch.cuda.synchronize(device)
    elif device.type == "mps":
        torch.mps.synchronize()
