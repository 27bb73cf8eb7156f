"""Resource-managed kernel pipeline runtime.

`ComputeRuntime` owns one device plus a kernel cache keyed by a namespaced
shader key. Kernel libraries are loaded lazily and never reloaded for the same
key. Each pipeline step:

1. ensures its kernel library is loaded,
2. ensures every output buffer exists (zero-initialized),
3. binds inputs (read-only) and outputs (read-write) in declaration order,
4. dispatches `ceil(ceil(total / elems) / workgroup)` workgroups,
5. blocks until the device reports completion.

Generator steps (no inputs) dispatch a single invocation and loop over their
own output length.
"""

from __future__ import annotations

import importlib
from types import ModuleType
from typing import Iterable, Optional, Sequence

import numpy as np
import pandas as pd
import torch

from qql.console import console
from qql.errors import KernelError
from qql.kernels.registry import LIBRARY_PACKAGES, select_backend
from qql.kernels.runtime import get_device, synchronize
from qql.kernels.types import Column, DType, KernelStep, OutputSpec, Table, pack_uniforms

CACHE_NAMESPACE = "qql.v1"

# [CHOICE] singular-fit threshold for the global regression
# [FORMULA] slope = 0 when |n*sum(x^2) - sum(x)^2| <= 1e-12
# [REASON] the index design matrix is only singular for n <= 1
_DENOM_EPS = 1e-12


class ComputeRuntime:
    """Device + kernel cache + pipeline execution."""

    def __init__(
        self,
        device: str | torch.device | None = None,
        backend: str = "auto",
        *,
        verbose: bool = False,
    ) -> None:
        self._device = get_device(device)
        self._backend = select_backend(backend, self._device)
        self._verbose = bool(verbose)
        # cache key -> (source, library)
        self._kernels: dict[str, tuple[str, ModuleType]] = {}

    @property
    def device(self) -> torch.device:
        return self._device

    @property
    def backend(self) -> str:
        return self._backend

    def cache_key(self, shader_key: str) -> str:
        return f"{CACHE_NAMESPACE}/{self._backend}/{shader_key}"

    def cached_kernels(self) -> list[str]:
        return list(self._kernels)

    # ------------------------------------------------------------------
    # Upload / download
    # ------------------------------------------------------------------

    def upload(self, df: pd.DataFrame, columns: Optional[Iterable[str]] = None) -> Table:
        """Copy supported (f32/i32/u32) columns of `df` into a device table.

        Columns of other dtypes are skipped. Nulls become NaN (f32) or 0.
        """
        names = list(df.columns) if columns is None else list(columns)
        table = Table(row_count=len(df))
        for name in names:
            series = df[name]
            dtype = DType.from_pandas(series.dtype)
            if dtype is None:
                continue
            host = series.to_numpy(dtype=dtype.numpy_dtype, na_value=dtype.null_sentinel)
            if dtype is DType.U32:
                host = host.astype(np.int64)
            # always a fresh buffer; kernels must never write into pandas memory
            buf = torch.tensor(host, dtype=dtype.torch_dtype, device=self._device)
            table.columns[str(name)] = Column(name=str(name), dtype=dtype, length=len(df), buffer=buf)
        return table

    def download(self, table: Table, name: str) -> np.ndarray:
        col = table.require(name)
        return col.buffer.detach().cpu().numpy().astype(col.dtype.numpy_dtype, copy=False)

    def download_append(self, df: pd.DataFrame, table: Table, name: str) -> None:
        """Append column `name` from `table` to `df` in place."""
        col = table.require(name)
        if col.length != len(df):
            raise KernelError(f"download_append expects column of len {len(df)}, got {col.length} for '{name}'")
        df[name] = self.download(table, name)

    def download_scalar(self, table: Table, name: str) -> float:
        col = table.require(name)
        if col.dtype is not DType.F32:
            raise KernelError(f"download_scalar expects an f32 column, '{name}' is {col.dtype.value}")
        if col.length != 1:
            raise KernelError(f"download_scalar expects a column of len 1, '{name}' has len {col.length}")
        return float(col.buffer[0].item())

    # ------------------------------------------------------------------
    # Kernels
    # ------------------------------------------------------------------

    def ensure_kernel(self, shader_key: str, source: Optional[str] = None) -> ModuleType:
        """Load (once) the kernel library behind `shader_key`."""
        key = self.cache_key(shader_key)
        cached = self._kernels.get(key)
        if cached is not None:
            cached_source, library = cached
            if source is not None and source != cached_source:
                raise KernelError(
                    f"shader '{key}' is cached with source '{cached_source}', refusing to reuse it for '{source}'"
                )
            return library
        if source is None:
            raise KernelError(f"shader '{key}' not found and no source provided")
        module_name = f"{LIBRARY_PACKAGES[self._backend]}.{source}"
        try:
            library = importlib.import_module(module_name)
        except ModuleNotFoundError as e:
            raise KernelError(f"shader '{key}': kernel library '{module_name}' not found") from e
        self._kernels[key] = (source, library)
        if self._verbose:
            console.info(f"Loaded kernel library {module_name}", detail=key)
        return library

    def _ensure_output(self, table: Table, spec: OutputSpec, created: list[str]) -> Column:
        length = spec.resolve_len(table.row_count)
        col = table.columns.get(spec.name)
        if col is None:
            buf = torch.zeros(length, dtype=spec.dtype.torch_dtype, device=self._device)
            col = Column(name=spec.name, dtype=spec.dtype, length=length, buffer=buf)
            table.columns[spec.name] = col
            created.append(spec.name)
            return col
        if col.length != length:
            raise KernelError(f"Output '{spec.name}' exists with len {col.length} but step expects len {length}")
        if col.dtype is not spec.dtype:
            raise KernelError(
                f"Output '{spec.name}' exists with dtype {col.dtype.value} but step expects {spec.dtype.value}"
            )
        return col

    def run_pipeline(self, table: Table, steps: Sequence[KernelStep]) -> list[str]:
        """Run `steps` in order; returns the names of newly created columns."""
        created: list[str] = []
        for step in steps:
            library = self.ensure_kernel(step.shader_key, step.source)
            kernel = getattr(library, step.entry_point, None)
            if kernel is None:
                raise KernelError(f"shader '{self.cache_key(step.shader_key)}' has no entry point '{step.entry_point}'")

            inputs = [table.require(name).buffer for name in step.inputs]
            outputs = [self._ensure_output(table, spec, created).buffer for spec in step.outputs]
            params = step.params()
            total, groups = step.dispatch_shape(table.row_count)

            kernel(
                inputs,
                outputs,
                params,
                n=total,
                grid=groups,
                block=max(1, int(step.workgroup_size)),
                elems=max(1, int(step.elems_per_invocation)),
            )
            synchronize(self._device)
            if self._verbose:
                console.info(f"{step.entry_point}", detail=f"n={total} groups={groups} -> {[o.name for o in step.outputs]}")
        return created

    # ------------------------------------------------------------------
    # Composite operations
    # ------------------------------------------------------------------

    def process(self, df: pd.DataFrame, steps: Sequence[KernelStep]) -> pd.DataFrame:
        """Upload `df`, run `steps`, and append every column-shaped output."""
        table = self.upload(df)
        self.run_pipeline(table, steps)
        out = df.copy()
        for step in steps:
            for spec in step.outputs:
                if spec.resolve_len(table.row_count) == table.row_count and spec.name not in out.columns:
                    self.download_append(out, table, spec.name)
        return out

    def linear_regression_global(self, df: pd.DataFrame, y: str, alias: str) -> tuple[pd.DataFrame, float, float]:
        """Least-squares fit of `y` against the row index, entirely in kernels.

        Returns `(df_with_alias, intercept, slope)`. The fitted line is written
        to column `alias`.
        """
        if y not in df.columns:
            raise KernelError(f"column '{y}' not found in table")
        out = df.copy()
        n = len(out)
        if n == 0:
            out[alias] = np.zeros(0, dtype=np.float32)
            return out, 0.0, 0.0

        host = pd.DataFrame({y: out[y].astype(np.float32)})
        table = self.upload(host)
        iy, sum_y, sum_iy = f"__{alias}_iy", f"__{alias}_sum_y", f"__{alias}_sum_iy"
        self.run_pipeline(
            table,
            [
                KernelStep("elementwise", "mul_index", (y,), (OutputSpec.column(iy),), source="elementwise"),
                KernelStep("reduce", "reduce_sum", (y,), (OutputSpec.scalar(sum_y),), source="reduce"),
                KernelStep("reduce", "reduce_sum", (iy,), (OutputSpec.scalar(sum_iy),), source="reduce"),
            ],
        )
        s_y = self.download_scalar(table, sum_y)
        s_iy = self.download_scalar(table, sum_iy)

        sx = n * (n - 1) / 2.0
        sx2 = (n - 1) * n * (2 * n - 1) / 6.0
        denom = n * sx2 - sx * sx
        slope = (n * s_iy - sx * s_y) / denom if abs(denom) > _DENOM_EPS else 0.0
        intercept = (s_y - slope * sx) / n

        self.run_pipeline(
            table,
            [
                KernelStep(
                    "elementwise",
                    "axpb_index",
                    (),
                    (OutputSpec.column(alias),),
                    source="elementwise",
                    uniform_bytes=pack_uniforms("<ff", intercept, slope),
                    uniform_layout="<ff",
                ),
            ],
        )
        self.download_append(out, table, alias)
        return out, float(intercept), float(slope)
