"""Triton elementwise kernels (CUDA)."""

from __future__ import annotations

from typing import Sequence

import torch
import triton
import triton.language as tl


def _span(block: int, elems: int) -> int:
    return triton.next_power_of_2(max(1, block * elems))


@triton.jit
def _fill_kernel(out_ptr, value, N, BLOCK: tl.constexpr):
    # Generator: a single program walks the whole output.
    for start in range(0, N, BLOCK):
        offs = start + tl.arange(0, BLOCK)
        tl.store(out_ptr + offs, tl.zeros([BLOCK], dtype=tl.float32) + value, mask=offs < N)


@triton.jit
def _sub_kernel(a_ptr, b_ptr, out_ptr, N, BLOCK: tl.constexpr):
    pid = tl.program_id(0)
    offs = pid * BLOCK + tl.arange(0, BLOCK)
    mask = offs < N
    a = tl.load(a_ptr + offs, mask=mask, other=0.0)
    b = tl.load(b_ptr + offs, mask=mask, other=0.0)
    tl.store(out_ptr + offs, a - b, mask=mask)


@triton.jit
def _band_kernel(price_ptr, vol_ptr, out_ptr, scale, N, BLOCK: tl.constexpr):
    pid = tl.program_id(0)
    offs = pid * BLOCK + tl.arange(0, BLOCK)
    mask = offs < N
    p = tl.load(price_ptr + offs, mask=mask, other=0.0)
    v = tl.load(vol_ptr + offs, mask=mask, other=0.0)
    tl.store(out_ptr + offs, p + scale * v, mask=mask)


@triton.jit
def _mul_index_kernel(y_ptr, out_ptr, N, BLOCK: tl.constexpr):
    pid = tl.program_id(0)
    offs = pid * BLOCK + tl.arange(0, BLOCK)
    mask = offs < N
    y = tl.load(y_ptr + offs, mask=mask, other=0.0)
    tl.store(out_ptr + offs, offs.to(tl.float32) * y, mask=mask)


@triton.jit
def _axpb_kernel(out_ptr, a, b, N, BLOCK: tl.constexpr):
    # Generator: a single program walks the whole output.
    for start in range(0, N, BLOCK):
        offs = start + tl.arange(0, BLOCK)
        tl.store(out_ptr + offs, a + b * offs.to(tl.float32), mask=offs < N)


def constant_fill(inputs: Sequence[torch.Tensor], outputs: Sequence[torch.Tensor], params: tuple, *, n: int, grid: int, block: int, elems: int) -> None:
    (out,) = outputs
    value = float(params[0]) if params else 0.0
    _fill_kernel[(1,)](out, value, out.numel(), BLOCK=_span(block, elems))


def difference_pair(inputs: Sequence[torch.Tensor], outputs: Sequence[torch.Tensor], params: tuple, *, n: int, grid: int, block: int, elems: int) -> None:
    a, b = inputs
    (out,) = outputs
    _sub_kernel[(grid,)](a, b, out, n, BLOCK=_span(block, elems))


def band_from_vol(inputs: Sequence[torch.Tensor], outputs: Sequence[torch.Tensor], params: tuple, *, n: int, grid: int, block: int, elems: int) -> None:
    price, vol = inputs
    (out,) = outputs
    _band_kernel[(grid,)](price, vol, out, float(params[0]), n, BLOCK=_span(block, elems))


def mul_index(inputs: Sequence[torch.Tensor], outputs: Sequence[torch.Tensor], params: tuple, *, n: int, grid: int, block: int, elems: int) -> None:
    (y,) = inputs
    (out,) = outputs
    _mul_index_kernel[(grid,)](y, out, n, BLOCK=_span(block, elems))


def axpb_index(inputs: Sequence[torch.Tensor], outputs: Sequence[torch.Tensor], params: tuple, *, n: int, grid: int, block: int, elems: int) -> None:
    (out,) = outputs
    _axpb_kernel[(1,)](out, float(params[0]), float(params[1]), out.numel(), BLOCK=_span(block, elems))
