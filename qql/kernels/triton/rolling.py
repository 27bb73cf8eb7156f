"""Triton rolling-window kernels (CUDA).

Mirrors `qql.kernels.portable.rolling`:
- sma_centered: mean over [i - (period - 1 - period // 2), i + period // 2]
- volatility: annualized sample std of log returns over `period` returns

Rows whose window leaves the series (or touches a non-positive price) are 0.0.
"""

from __future__ import annotations

from typing import Sequence

import torch
import triton
import triton.language as tl


@triton.jit
def _sma_kernel(x_ptr, out_ptr, N, period, half, BLOCK: tl.constexpr):
    pid = tl.program_id(0)
    offs = pid * BLOCK + tl.arange(0, BLOCK)
    mask = offs < N
    lo = offs - (period - 1 - half)
    hi = offs + half
    inside = mask & (lo >= 0) & (hi < N)
    acc = tl.zeros([BLOCK], dtype=tl.float32)
    for k in range(0, period):
        acc += tl.load(x_ptr + lo + k, mask=inside, other=0.0)
    out = tl.where(inside, acc / period, 0.0)
    tl.store(out_ptr + offs, out, mask=mask)


@triton.jit
def _vol_kernel(p_ptr, out_ptr, N, period, ann, BLOCK: tl.constexpr):
    pid = tl.program_id(0)
    offs = pid * BLOCK + tl.arange(0, BLOCK)
    mask = offs < N
    # returns r[k] = ln(p[k] / p[k-1]) for k in [i - period + 1, i]
    first = offs - period + 1
    inside = mask & (first >= 1)

    # [CHOICE] two-pass window statistics
    # [FORMULA] mean = sum(r)/period ; var = sum((r-mean)^2)/(period-1)
    # [REASON] avoids cancellation of the sum-of-squares form in f32
    ok = inside
    total = tl.zeros([BLOCK], dtype=tl.float32)
    for k in range(0, period):
        cur = tl.load(p_ptr + first + k, mask=inside, other=1.0)
        prev = tl.load(p_ptr + first + k - 1, mask=inside, other=1.0)
        ok = ok & (cur > 0.0) & (prev > 0.0)
        total += tl.log(tl.where(cur > 0.0, cur, 1.0)) - tl.log(tl.where(prev > 0.0, prev, 1.0))
    mean = total / period

    ss = tl.zeros([BLOCK], dtype=tl.float32)
    for k in range(0, period):
        cur = tl.load(p_ptr + first + k, mask=inside, other=1.0)
        prev = tl.load(p_ptr + first + k - 1, mask=inside, other=1.0)
        d = tl.log(tl.where(cur > 0.0, cur, 1.0)) - tl.log(tl.where(prev > 0.0, prev, 1.0)) - mean
        ss += d * d
    vol = tl.sqrt(ss / (period - 1)) * ann
    tl.store(out_ptr + offs, tl.where(ok, vol, 0.0), mask=mask)


def sma_centered(inputs: Sequence[torch.Tensor], outputs: Sequence[torch.Tensor], params: tuple, *, n: int, grid: int, block: int, elems: int) -> None:
    (x,) = inputs
    (out,) = outputs
    period = max(1, int(params[0]))
    span = triton.next_power_of_2(max(1, block * elems))
    _sma_kernel[(grid,)](x, out, n, period, period // 2, BLOCK=span)


def volatility(inputs: Sequence[torch.Tensor], outputs: Sequence[torch.Tensor], params: tuple, *, n: int, grid: int, block: int, elems: int) -> None:
    (price,) = inputs
    (out,) = outputs
    period = max(2, int(params[0]))
    days = float(params[1]) if len(params) > 1 else 252.0
    span = triton.next_power_of_2(max(1, block * elems))
    _vol_kernel[(grid,)](price, out, n, period, days ** 0.5, BLOCK=span)
