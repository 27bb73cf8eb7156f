"""Scalar reductions."""

from __future__ import annotations

from typing import Sequence

import torch

from qql.kernels.portable import accumulator_dtype


def reduce_sum(inputs: Sequence[torch.Tensor], outputs: Sequence[torch.Tensor], params: tuple, *, n: int, grid: int, block: int, elems: int) -> None:
    (x,) = inputs
    (out,) = outputs
    out[0] = x[:n].to(accumulator_dtype(x)).sum().to(out.dtype)
