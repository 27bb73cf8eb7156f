"""Elementwise kernels: fills, pairwise differences, bands, index products."""

from __future__ import annotations

from typing import Sequence

import torch


def constant_fill(inputs: Sequence[torch.Tensor], outputs: Sequence[torch.Tensor], params: tuple, *, n: int, grid: int, block: int, elems: int) -> None:
    (out,) = outputs
    value = float(params[0]) if params else 0.0
    out.fill_(value)


def difference_pair(inputs: Sequence[torch.Tensor], outputs: Sequence[torch.Tensor], params: tuple, *, n: int, grid: int, block: int, elems: int) -> None:
    a, b = inputs
    (out,) = outputs
    torch.sub(a[:n], b[:n], out=out[:n])


def band_from_vol(inputs: Sequence[torch.Tensor], outputs: Sequence[torch.Tensor], params: tuple, *, n: int, grid: int, block: int, elems: int) -> None:
    """out = price + scale * vol (scale is signed)."""
    price, vol = inputs
    (out,) = outputs
    scale = float(params[0])
    torch.add(price[:n], vol[:n], alpha=scale, out=out[:n])


def mul_index(inputs: Sequence[torch.Tensor], outputs: Sequence[torch.Tensor], params: tuple, *, n: int, grid: int, block: int, elems: int) -> None:
    (y,) = inputs
    (out,) = outputs
    idx = torch.arange(n, device=y.device, dtype=out.dtype)
    torch.mul(idx, y[:n], out=out[:n])


def axpb_index(inputs: Sequence[torch.Tensor], outputs: Sequence[torch.Tensor], params: tuple, *, n: int, grid: int, block: int, elems: int) -> None:
    """Generator: out[i] = a + b * i over the whole output."""
    (out,) = outputs
    a, b = float(params[0]), float(params[1])
    idx = torch.arange(out.numel(), device=out.device, dtype=out.dtype)
    out.copy_(idx * b + a)
