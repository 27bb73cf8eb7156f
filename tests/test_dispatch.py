"""Calc dispatch over a frame: ordering, naming, validation and sanitization."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from qql.config import EngineConfig
from qql.engine.calculation import Calculation
from qql.engine.dispatch import action_over_data, build_steps, output_names, validate_dependencies
from qql.errors import DispatchError
from qql.kernels.compute import ComputeRuntime
from qql.language.ast import ActionSection, Calc, Operation


def _frame() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "timestamp": np.array([1, 2, 3], dtype=np.int64),
            "close": [10.0, 12.0, 9.0],
            "open": [1.0, 2.0, 3.0],
            "other": [5.0, 6.0, 7.0],
        }
    )


def _action(*calcs: Calc, fields: tuple[str, ...] = ("timestamp", "close", "open")) -> ActionSection:
    return ActionSection(fields=fields, calcs=tuple(calcs))


def test_difference(runtime: ComputeRuntime) -> None:
    out = action_over_data(_action(Calc(("close", "open"), Operation.DIFFERENCE, "spread")), _frame(), runtime)
    assert list(out.columns) == ["timestamp", "close", "open", "spread"]
    assert out["spread"].dtype == np.float64
    assert out["spread"].tolist() == [9.0, 10.0, 6.0]


def test_multi_input_difference_names(runtime: ComputeRuntime) -> None:
    calc = Calc(("close", "open", "other"), Operation.DIFFERENCE, "d")
    assert output_names(calc) == ("d_0", "d_1")
    out = action_over_data(_action(calc), _frame(), runtime)
    assert out["d_0"].tolist() == [9.0, 10.0, 6.0]
    assert out["d_1"].tolist() == [-4.0, -4.0, -4.0]


def test_input_is_sorted_by_timestamp(runtime: ComputeRuntime) -> None:
    df = _frame().iloc[[2, 0, 1]].reset_index(drop=True)
    out = action_over_data(_action(Calc(("close", "open"), Operation.DIFFERENCE, "spread")), df, runtime)
    assert out["timestamp"].tolist() == [1, 2, 3]
    assert out["spread"].tolist() == [9.0, 10.0, 6.0]


def test_later_calc_consumes_earlier_alias(runtime: ComputeRuntime) -> None:
    action = _action(
        Calc(("close", "open"), Operation.DIFFERENCE, "spread"),
        Calc(("spread", "3"), Operation.SMA, "smooth"),
        Calc(("4",), Operation.CONSTANT, "four"),
    )
    out = action_over_data(action, _frame(), runtime)
    assert out["smooth"].tolist() == pytest.approx([0.0, 25.0 / 3.0, 0.0])
    assert out["four"].tolist() == [4.0, 4.0, 4.0]


def test_volatility_bands(runtime: ComputeRuntime, ohlc: pd.DataFrame) -> None:
    action = _action(Calc(("close", "5"), Operation.VOLATILITY, "vol"))
    out = action_over_data(action, ohlc, runtime)
    assert {"vol", "vol_pos", "vol_neg"}.issubset(out.columns)
    np.testing.assert_allclose(out["vol_pos"] - out["vol_neg"], out["vol"], atol=1e-3)
    np.testing.assert_allclose(out["vol_pos"] - out["close"], 0.5 * out["vol"], atol=1e-3)


def test_double_volatility_uses_full_scale(runtime: ComputeRuntime, ohlc: pd.DataFrame) -> None:
    out = action_over_data(_action(Calc(("close",), Operation.DOUBLE_VOLATILITY, "dv")), ohlc, runtime)
    np.testing.assert_allclose(out["dv_pos"] - out["close"], out["dv"], atol=1e-3)
    assert np.all(out["dv"].to_numpy()[:14] == 0.0)


def test_linear_regression_runs_on_cpu(runtime: ComputeRuntime, ohlc: pd.DataFrame) -> None:
    out = action_over_data(_action(Calc(("close",), Operation.LINEAR_REGRESSION, "trend")), ohlc, runtime)
    want = Calculation.linear_regression(ohlc["close"].astype(np.float32).to_numpy())
    np.testing.assert_allclose(out["trend"], want, atol=1e-6)
    with pytest.raises(DispatchError):
        build_steps(Calc(("close",), Operation.LINEAR_REGRESSION, "trend"), EngineConfig())


def test_unknown_column_names_calc(runtime: ComputeRuntime) -> None:
    with pytest.raises(DispatchError, match="calc 'x' \\(SMA\\) references unknown column 'nope'"):
        action_over_data(_action(Calc(("nope",), Operation.SMA, "x")), _frame(), runtime)


def test_forward_reference_is_rejected() -> None:
    action = _action(
        Calc(("later", "3"), Operation.SMA, "early"),
        Calc(("close", "open"), Operation.DIFFERENCE, "later"),
    )
    with pytest.raises(DispatchError, match="unknown column 'later'"):
        validate_dependencies(action, ["timestamp", "close", "open"])


@pytest.mark.parametrize("op", [Operation.SUM, Operation.MULTIPLY, Operation.DIVIDE])
def test_unsupported_operations(runtime: ComputeRuntime, op: Operation) -> None:
    with pytest.raises(DispatchError, match="unsupported operation"):
        action_over_data(_action(Calc(("close", "open"), op, "x")), _frame(), runtime)


def test_bad_period(runtime: ComputeRuntime) -> None:
    with pytest.raises(DispatchError, match="period"):
        action_over_data(_action(Calc(("close", "0"), Operation.SMA, "s")), _frame(), runtime)


def test_missing_pulled_field(runtime: ComputeRuntime) -> None:
    with pytest.raises(DispatchError, match="pulled field 'volume'"):
        action_over_data(_action(fields=("timestamp", "volume")), _frame(), runtime)


def test_calc_inputs_are_sanitized(runtime: ComputeRuntime) -> None:
    df = _frame()
    df["other"] = [np.nan, 6.0, np.inf]
    out = action_over_data(_action(Calc(("other", "close"), Operation.DIFFERENCE, "d")), df, runtime)
    assert out["d"].tolist() == [-4.0, -6.0, -3.0]


@pytest.mark.parametrize(
    "calc",
    [
        Calc(("close", "2"), Operation.SMA, "close"),
        Calc(("close", "open"), Operation.DIFFERENCE, "other"),
        Calc(("close", "2"), Operation.VOLATILITY, "open"),
    ],
)
def test_alias_may_not_overwrite_a_column(runtime: ComputeRuntime, calc: Calc) -> None:
    df = _frame()
    before = df.copy()
    with pytest.raises(DispatchError, match="would overwrite existing column"):
        action_over_data(_action(calc), df, runtime)
    pd.testing.assert_frame_equal(df, before)


def test_derived_band_names_may_not_collide_with_earlier_alias() -> None:
    action = _action(
        Calc(("close", "open"), Operation.DIFFERENCE, "v_pos"),
        Calc(("close", "2"), Operation.VOLATILITY, "v"),
    )
    with pytest.raises(DispatchError, match="existing column 'v_pos'"):
        validate_dependencies(action, ["timestamp", "close", "open"])
