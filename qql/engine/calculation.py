"""Closed-form CPU calculations.

These are the reference implementations the kernels are checked against, and
the execution path for operations that never go to a kernel
(LINEAR_REGRESSION). All functions take and return float64 numpy arrays; rows
without a full window are 0.0, matching the kernels.
"""

from __future__ import annotations

import math
from typing import Mapping

import numpy as np

from qql.errors import DispatchError
from qql.language.ast import Calc, Operation, is_number

VOLATILITY_SCALES = {
    Operation.VOLATILITY: 0.5,
    Operation.DOUBLE_VOLATILITY: 1.0,
}


def calc_period(calc: Calc, default: int) -> int:
    """Second input of SMA/VOLATILITY is the window length."""
    if len(calc.inputs) < 2:
        return int(default)
    raw = calc.inputs[1]
    if not is_number(raw):
        raise DispatchError(f"calc '{calc.alias}' ({calc.operation.value}): period '{raw}' is not a number")
    period = int(float(raw))
    if period < 1:
        raise DispatchError(f"calc '{calc.alias}' ({calc.operation.value}): period must be >= 1, got {period}")
    return period


def source_column(calc: Calc) -> str:
    """First input of SMA/VOLATILITY/LINEAR_REGRESSION names the source column."""
    if not calc.inputs or is_number(calc.inputs[0]):
        raise DispatchError(f"calc '{calc.alias}' ({calc.operation.value}): first input must be a column")
    return calc.inputs[0]


def constant_value(calc: Calc) -> float:
    if not calc.inputs:
        return 0.0
    raw = calc.inputs[0]
    if not is_number(raw):
        raise DispatchError(f"calc '{calc.alias}' (CONSTANT): value '{raw}' is not a number")
    return float(raw)


class Calculation:
    """CPU closed forms for every kernel-backed operation."""

    @staticmethod
    def constant(n: int, value: float) -> np.ndarray:
        return np.full(n, float(value), dtype=np.float64)

    @staticmethod
    def difference(a: np.ndarray, b: np.ndarray) -> np.ndarray:
        return np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)

    @staticmethod
    def sma(x: np.ndarray, period: int) -> np.ndarray:
        x = np.asarray(x, dtype=np.float64)
        n = len(x)
        out = np.zeros(n, dtype=np.float64)
        period = max(1, int(period))
        if period > n:
            return out
        half = period // 2
        lo = period - 1 - half
        trailing = np.convolve(x, np.ones(period) / period, mode="valid")
        out[lo:lo + len(trailing)] = trailing
        return out

    @staticmethod
    def volatility(price: np.ndarray, period: int, annualization_days: int = 252) -> np.ndarray:
        p = np.asarray(price, dtype=np.float64)
        n = len(p)
        period = max(2, int(period))
        out = np.zeros(n, dtype=np.float64)
        ann = math.sqrt(float(annualization_days))
        for i in range(period, n):
            window = p[i - period:i + 1]
            if not (np.all(np.isfinite(window)) and np.all(window > 0)):
                continue
            returns = np.diff(np.log(window))
            out[i] = float(np.std(returns, ddof=1)) * ann
        return out

    @staticmethod
    def band(price: np.ndarray, vol: np.ndarray, scale: float) -> np.ndarray:
        return np.asarray(price, dtype=np.float64) + float(scale) * np.asarray(vol, dtype=np.float64)

    @staticmethod
    def linear_regression(y: np.ndarray) -> np.ndarray:
        """OLS of y against the row index over finite rows; returns the fitted line."""
        y = np.asarray(y, dtype=np.float64)
        n = len(y)
        idx = np.arange(n, dtype=np.float64)
        valid = np.isfinite(y)
        if valid.sum() < 2:
            first = float(y[valid][0]) if valid.any() else 0.0
            return np.full(n, first, dtype=np.float64)
        xs, ys = idx[valid], y[valid]
        x_mean, y_mean = xs.mean(), ys.mean()
        sxx = float(((xs - x_mean) ** 2).sum())
        slope = float(((xs - x_mean) * (ys - y_mean)).sum()) / sxx if sxx > 0 else 0.0
        intercept = y_mean - slope * x_mean
        return slope * idx + intercept

    @classmethod
    def run(
        cls,
        calc: Calc,
        columns: Mapping[str, np.ndarray],
        n: int,
        *,
        default_period: int = 14,
        annualization_days: int = 252,
    ) -> dict[str, np.ndarray]:
        """Evaluate `calc` on host columns; returns output name -> values."""
        op = calc.operation
        col = lambda name: np.asarray(columns[name], dtype=np.float64)  # noqa: E731

        if op is Operation.CONSTANT:
            return {calc.alias: cls.constant(n, constant_value(calc))}
        if op is Operation.DIFFERENCE:
            names = calc.column_inputs()
            if len(names) < 2:
                raise DispatchError(f"calc '{calc.alias}' (DIFFERENCE): needs at least two inputs")
            out = {}
            for i, (a, b) in enumerate(zip(names, names[1:])):
                key = calc.alias if len(names) == 2 else f"{calc.alias}_{i}"
                out[key] = cls.difference(col(a), col(b))
            return out
        if op is Operation.SMA:
            return {calc.alias: cls.sma(col(source_column(calc)), calc_period(calc, default_period))}
        if op in VOLATILITY_SCALES:
            price = col(source_column(calc))
            vol = cls.volatility(price, calc_period(calc, default_period), annualization_days)
            scale = VOLATILITY_SCALES[op]
            return {
                calc.alias: vol,
                f"{calc.alias}_pos": cls.band(price, vol, scale),
                f"{calc.alias}_neg": cls.band(price, vol, -scale),
            }
        if op is Operation.LINEAR_REGRESSION:
            return {calc.alias: cls.linear_regression(col(source_column(calc)))}
        raise DispatchError(f"unsupported operation {op.value} in calc '{calc.alias}'")
