"""Calc dispatch: map each `Calc` to kernel steps or a CPU closed form.

`action_over_data` is the per-frame driver. It sorts the pulled frame by
timestamp, sanitizes the core price columns once, then for every Calc (in
source order) sanitizes only that Calc's inputs, runs it, and appends each
produced column (as float64) to both the output table and the working table,
so later Calcs can consume earlier aliases.
"""

from __future__ import annotations

from typing import Iterable, Optional

import pandas as pd

from qql.config import EngineConfig
from qql.errors import DispatchError, KernelError
from qql.kernels.compute import ComputeRuntime
from qql.kernels.types import KernelStep, OutputSpec, pack_uniforms
from qql.engine.calculation import (
    VOLATILITY_SCALES,
    Calculation,
    calc_period,
    constant_value,
    source_column,
)
from qql.engine.sanitize import CORE_PRICE_COLUMNS, TIME_COLUMN, sanitize_for_gpu, sort_by_time
from qql.language.ast import ActionSection, Calc, Operation

# Operations that never go to a kernel.
CPU_OPERATIONS = frozenset({Operation.LINEAR_REGRESSION})


def output_names(calc: Calc) -> tuple[str, ...]:
    """Columns a Calc appends, in order."""
    op = calc.operation
    if op is Operation.DIFFERENCE:
        pairs = max(0, len(calc.column_inputs()) - 1)
        if pairs == 1:
            return (calc.alias,)
        return tuple(f"{calc.alias}_{i}" for i in range(pairs))
    if op in VOLATILITY_SCALES:
        return (calc.alias, f"{calc.alias}_pos", f"{calc.alias}_neg")
    return (calc.alias,)


def validate_dependencies(action: ActionSection, columns: Iterable[str]) -> None:
    """Every Calc input must be a source column or an earlier alias.

    Outputs are appended, never overwritten: a Calc may not produce a column
    that already exists in the frame or came from an earlier Calc.
    """
    available = set(columns)
    for calc in action.calcs:
        for name in calc.column_inputs():
            if name not in available:
                raise DispatchError(
                    f"calc '{calc.alias}' ({calc.operation.value}) references unknown column '{name}'"
                )
        for name in output_names(calc):
            if name in available:
                raise DispatchError(
                    f"calc '{calc.alias}' ({calc.operation.value}) would overwrite existing column '{name}'"
                )
        available.update(output_names(calc))


def _step(config: EngineConfig, source: str, entry: str, inputs: tuple[str, ...], output: str,
          layout: str = "", *values: float) -> KernelStep:
    return KernelStep(
        shader_key=source,
        entry_point=entry,
        inputs=inputs,
        outputs=(OutputSpec.column(output),),
        source=source,
        workgroup_size=config.workgroup_size,
        elems_per_invocation=config.elems_per_invocation,
        uniform_bytes=pack_uniforms(layout, *values) if layout else None,
        uniform_layout=layout,
    )


def build_steps(calc: Calc, config: EngineConfig) -> list[KernelStep]:
    """Kernel steps for a kernel-backed Calc."""
    op = calc.operation
    if op is Operation.CONSTANT:
        return [_step(config, "elementwise", "constant_fill", (), calc.alias, "<f", constant_value(calc))]

    if op is Operation.DIFFERENCE:
        names = calc.column_inputs()
        if len(names) < 2:
            raise DispatchError(f"calc '{calc.alias}' (DIFFERENCE): needs at least two inputs")
        return [
            _step(config, "elementwise", "difference_pair", (a, b), out)
            for (a, b), out in zip(zip(names, names[1:]), output_names(calc))
        ]

    if op is Operation.SMA:
        period = calc_period(calc, config.default_period)
        return [_step(config, "rolling", "sma_centered", (source_column(calc),), calc.alias, "<I", period)]

    if op in VOLATILITY_SCALES:
        price = source_column(calc)
        period = calc_period(calc, config.default_period)
        scale = VOLATILITY_SCALES[op]
        vol, pos, neg = output_names(calc)
        return [
            _step(config, "rolling", "volatility", (price,), vol, "<If", period, float(config.annualization_days)),
            _step(config, "elementwise", "band_from_vol", (price, vol), pos, "<f", scale),
            _step(config, "elementwise", "band_from_vol", (price, vol), neg, "<f", -scale),
        ]

    raise DispatchError(f"unsupported operation {op.value} in calc '{calc.alias}'")


def _run_calc(calc: Calc, working: pd.DataFrame, runtime: ComputeRuntime, config: EngineConfig) -> dict[str, object]:
    if calc.operation in CPU_OPERATIONS:
        cols = {name: working[name].to_numpy() for name in calc.column_inputs()}
        return Calculation.run(
            calc,
            cols,
            len(working),
            default_period=config.default_period,
            annualization_days=config.annualization_days,
        )

    steps = build_steps(calc, config)
    table = runtime.upload(working.drop(columns=[TIME_COLUMN]))
    runtime.run_pipeline(table, steps)
    return {spec.name: runtime.download(table, spec.name) for step in steps for spec in step.outputs}


def action_over_data(
    action: ActionSection,
    df: pd.DataFrame,
    runtime: ComputeRuntime,
    config: Optional[EngineConfig] = None,
) -> pd.DataFrame:
    """Resolve one frame: `timestamp`, pulled fields, then every alias (float64)."""
    config = config or EngineConfig()
    if TIME_COLUMN not in df.columns:
        raise DispatchError(f"column '{TIME_COLUMN}' not found")
    for name in action.fields:
        if name not in df.columns:
            raise DispatchError(f"pulled field '{name}' not found")
    validate_dependencies(action, df.columns)

    working = sort_by_time(df)
    working = sanitize_for_gpu(working, [c for c in CORE_PRICE_COLUMNS if c in working.columns])

    fields = [f for f in dict.fromkeys(action.fields) if f != TIME_COLUMN]
    out = working[[TIME_COLUMN, *fields]].copy()
    for name in fields:
        if pd.api.types.is_float_dtype(out[name]):
            out[name] = out[name].astype("float64")

    for calc in action.calcs:
        try:
            working = sanitize_for_gpu(working, calc.column_inputs())
            produced = _run_calc(calc, working, runtime, config)
        except KernelError as e:
            raise DispatchError(f"calc '{calc.alias}' ({calc.operation.value}): {e}") from e
        for name, values in produced.items():
            column = pd.Series(values, index=working.index).astype("float64")
            out[name] = column
            working[name] = column
    return out
