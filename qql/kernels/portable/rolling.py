"""Rolling-window kernels (centered SMA, annualized log-return volatility).

Both kernels write 0.0 wherever the window does not fit inside the series.
Accumulation runs in float64 (float32 on MPS) and the result is stored as f32.
"""

from __future__ import annotations

import math
from typing import Sequence

import torch

from qql.kernels.portable import accumulator_dtype


def sma_centered(inputs: Sequence[torch.Tensor], outputs: Sequence[torch.Tensor], params: tuple, *, n: int, grid: int, block: int, elems: int) -> None:
    """Centered simple moving average.

    With h = period // 2, out[i] = mean(x[i - (period - 1 - h) .. i + h]).
    """
    (x,) = inputs
    (out,) = outputs
    period = max(1, int(params[0]))
    out.zero_()
    if period > n:
        return
    half = period // 2
    acc = x[:n].to(accumulator_dtype(x))
    csum = torch.cat([acc.new_zeros(1), torch.cumsum(acc, dim=0)])
    trailing = (csum[period:] - csum[:-period]) / period  # trailing[j] = mean(x[j..j+period-1])
    lo = period - 1 - half
    out[lo:lo + trailing.numel()] = trailing.to(out.dtype)


def volatility(inputs: Sequence[torch.Tensor], outputs: Sequence[torch.Tensor], params: tuple, *, n: int, grid: int, block: int, elems: int) -> None:
    """Rolling sample std of log returns over `period` returns, annualized.

    params = (period, annualization_days). Row i uses returns r[i-period+1..i]
    where r[k] = ln(p[k] / p[k-1]); a window touching a non-positive or
    non-finite price yields 0.0.
    """
    (price,) = inputs
    (out,) = outputs
    period = max(2, int(params[0]))
    days = float(params[1]) if len(params) > 1 else 252.0
    out.zero_()
    if n <= period:
        return

    p = price[:n].to(accumulator_dtype(price))
    ok = torch.isfinite(p) & (p > 0)
    logp = torch.where(ok, p, torch.ones_like(p)).log()
    r = logp[1:] - logp[:-1]                       # r[k-1] = ln(p[k]/p[k-1])
    r_ok = (ok[1:] & ok[:-1]).to(p.dtype)

    windows = r.unfold(0, period, 1)              # windows[w] covers r[w .. w+period-1]
    valid = r_ok.unfold(0, period, 1).sum(dim=1) == period
    std = windows.std(dim=1, correction=1) * math.sqrt(days)
    std = torch.where(valid, std, torch.zeros_like(std))
    # window w ends at return index w+period-1, i.e. price row w+period
    out[period:period + std.numel()] = std.to(out.dtype)
