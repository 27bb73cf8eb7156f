"""Triton scalar reductions (CUDA)."""

from __future__ import annotations

from typing import Sequence

import torch
import triton
import triton.language as tl


@triton.jit
def _sum_kernel(x_ptr, out_ptr, N, BLOCK: tl.constexpr):
    pid = tl.program_id(0)
    offs = pid * BLOCK + tl.arange(0, BLOCK)
    x = tl.load(x_ptr + offs, mask=offs < N, other=0.0)
    # [CHOICE] cross-block combine
    # [FORMULA] out[0] += sum(block)
    # [REASON] one pass; output is zeroed by the launcher first
    tl.atomic_add(out_ptr, tl.sum(x, axis=0))


def reduce_sum(inputs: Sequence[torch.Tensor], outputs: Sequence[torch.Tensor], params: tuple, *, n: int, grid: int, block: int, elems: int) -> None:
    (x,) = inputs
    (out,) = outputs
    out.zero_()
    span = triton.next_power_of_2(max(1, block * elems))
    _sum_kernel[(grid,)](x, out, n, BLOCK=span)
