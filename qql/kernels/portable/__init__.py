"""Portable torch kernels.

Every entry point follows the runtime's launch contract:

    kernel(inputs, outputs, params, *, n, grid, block, elems)

`inputs`/`outputs` are device tensors in declaration order and `params` is the
unpacked uniform block. The torch kernels are vectorized over the whole
column, so the dispatch shape (`grid`, `block`, `elems`) is accepted but unused.
"""

from __future__ import annotations

import torch

__all__ = ["accumulator_dtype"]


def accumulator_dtype(t: torch.Tensor) -> torch.dtype:
    # MPS has no float64.
    return torch.float32 if t.device.type == "mps" else torch.float64
