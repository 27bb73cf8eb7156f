"""CPU closed forms, and parity of the portable kernels against them."""

from __future__ import annotations

import math

import numpy as np
import pandas as pd
import pytest

from qql.config import EngineConfig
from qql.engine.calculation import Calculation
from qql.engine.dispatch import build_steps
from qql.kernels.compute import ComputeRuntime
from qql.language.ast import Calc, Operation


def _prices(n: int = 64, seed: int = 3) -> np.ndarray:
    rng = np.random.default_rng(seed)
    p = 100.0 * np.exp(np.cumsum(rng.normal(0.0, 0.02, size=n)))
    # compare on the values the device actually sees
    return p.astype(np.float32).astype(np.float64)


def _run_kernels(runtime: ComputeRuntime, calc: Calc, df: pd.DataFrame) -> dict[str, np.ndarray]:
    steps = build_steps(calc, EngineConfig())
    table = runtime.upload(df.astype(np.float32))
    runtime.run_pipeline(table, steps)
    return {spec.name: runtime.download(table, spec.name).astype(np.float64) for s in steps for spec in s.outputs}


def test_sma_is_centered() -> None:
    x = np.arange(1.0, 6.0)
    assert Calculation.sma(x, 3).tolist() == [0.0, 2.0, 3.0, 4.0, 0.0]
    assert Calculation.sma(np.arange(1.0, 7.0), 4).tolist() == [0.0, 2.5, 3.5, 4.5, 0.0, 0.0]
    assert Calculation.sma(x, 10).tolist() == [0.0] * 5


def test_volatility_window_and_scale() -> None:
    p = _prices(20)
    period = 5
    vol = Calculation.volatility(p, period, 252)
    assert np.all(vol[:period] == 0.0)
    expected = np.std(np.diff(np.log(p[7 - period:8])), ddof=1) * math.sqrt(252)
    assert vol[7] == pytest.approx(expected)


def test_volatility_skips_non_positive_prices() -> None:
    p = _prices(20)
    p[10] = 0.0
    vol = Calculation.volatility(p, 3, 252)
    assert np.all(vol[10:14] == 0.0)
    assert vol[14] > 0.0


def test_linear_regression_ignores_invalid_rows() -> None:
    y = 1.5 - 0.5 * np.arange(8.0)
    y[3] = np.nan
    fit = Calculation.linear_regression(y)
    np.testing.assert_allclose(fit, 1.5 - 0.5 * np.arange(8.0), atol=1e-12)


def test_linear_regression_degenerate() -> None:
    assert Calculation.linear_regression(np.array([np.nan, 4.0, np.nan])).tolist() == [4.0, 4.0, 4.0]
    assert Calculation.linear_regression(np.array([np.nan, np.nan])).tolist() == [0.0, 0.0]


def test_difference_and_constant() -> None:
    out = Calculation.run(Calc(("a", "b"), Operation.DIFFERENCE, "d"), {"a": [10, 12, 9], "b": [1, 2, 3]}, 3)
    assert out["d"].tolist() == [9.0, 10.0, 6.0]
    out = Calculation.run(Calc(("2.5",), Operation.CONSTANT, "c"), {}, 2)
    assert out["c"].tolist() == [2.5, 2.5]


@pytest.mark.parametrize("period", [2, 5, 14])
def test_sma_kernel_matches_cpu(runtime: ComputeRuntime, period: int) -> None:
    p = _prices()
    calc = Calc(("close", str(period)), Operation.SMA, "s")
    got = _run_kernels(runtime, calc, pd.DataFrame({"close": p}))
    np.testing.assert_allclose(got["s"], Calculation.sma(p, period), atol=1e-4)


@pytest.mark.parametrize("op", [Operation.VOLATILITY, Operation.DOUBLE_VOLATILITY])
def test_volatility_kernels_match_cpu(runtime: ComputeRuntime, op: Operation) -> None:
    p = _prices()
    calc = Calc(("close", "10"), op, "v")
    got = _run_kernels(runtime, calc, pd.DataFrame({"close": p}))
    want = Calculation.run(calc, {"close": p}, len(p))
    assert set(got) == {"v", "v_pos", "v_neg"}
    np.testing.assert_allclose(got["v"], want["v"], atol=1e-4)
    # bands are ~100 in magnitude; f32 storage bounds the error
    np.testing.assert_allclose(got["v_pos"], want["v_pos"], atol=1e-4 * 100)
    np.testing.assert_allclose(got["v_neg"], want["v_neg"], atol=1e-4 * 100)
    assert np.any(got["v"] > 0.0)
