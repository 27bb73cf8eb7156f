"""Declarative kernel-step and device-table types."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np
import torch

from qql.errors import KernelError


class DType(str, Enum):
    F32 = "f32"
    I32 = "i32"
    U32 = "u32"

    @property
    def torch_dtype(self) -> torch.dtype:
        # u32 is stored widened to int64; torch uint32 lacks most ops.
        return {DType.F32: torch.float32, DType.I32: torch.int32, DType.U32: torch.int64}[self]

    @property
    def numpy_dtype(self) -> np.dtype:
        return np.dtype({DType.F32: np.float32, DType.I32: np.int32, DType.U32: np.uint32}[self])

    @property
    def null_sentinel(self) -> float:
        return float("nan") if self is DType.F32 else 0

    @classmethod
    def from_pandas(cls, dtype: object) -> Optional["DType"]:
        """Map a pandas/numpy dtype to a device dtype (None if unsupported)."""
        name = str(dtype).lower()
        if name == "float32":
            return cls.F32
        if name == "int32":
            return cls.I32
        if name == "uint32":
            return cls.U32
        return None


@dataclass(frozen=True, slots=True)
class OutputSpec:
    name: str
    dtype: DType = DType.F32
    length: Optional[int] = None  # None -> table row_count

    @classmethod
    def column(cls, name: str, dtype: DType = DType.F32) -> "OutputSpec":
        return cls(name=name, dtype=dtype, length=None)

    @classmethod
    def scalar(cls, name: str, dtype: DType = DType.F32) -> "OutputSpec":
        return cls(name=name, dtype=dtype, length=1)

    @classmethod
    def with_len(cls, name: str, length: int, dtype: DType = DType.F32) -> "OutputSpec":
        return cls(name=name, dtype=dtype, length=int(length))

    def resolve_len(self, row_count: int) -> int:
        return int(row_count) if self.length is None else int(self.length)


def pack_uniforms(layout: str, *values: float) -> bytes:
    """Pack a uniform block, e.g. `pack_uniforms("<ff", a, b)`."""
    return struct.pack(layout, *values)


@dataclass(frozen=True, slots=True)
class KernelStep:
    """One kernel invocation.

    `source` names the kernel library the shader key resolves to; it may be
    omitted once the key is cached. Inputs bind read-only and outputs bind
    read-write, both in declaration order; the uniform block (if any) is
    unpacked with `uniform_layout` and passed separately.
    """

    shader_key: str
    entry_point: str
    inputs: tuple[str, ...] = ()
    outputs: tuple[OutputSpec, ...] = ()
    source: Optional[str] = None
    workgroup_size: int = 256
    elems_per_invocation: int = 1
    uniform_bytes: Optional[bytes] = None
    uniform_layout: str = ""

    def params(self) -> tuple:
        if self.uniform_bytes is None:
            return ()
        if not self.uniform_layout:
            raise KernelError(f"step '{self.entry_point}' has uniforms but no layout")
        try:
            return struct.unpack(self.uniform_layout, self.uniform_bytes)
        except struct.error as e:
            raise KernelError(f"step '{self.entry_point}': bad uniform block ({e})") from e

    def dispatch_shape(self, row_count: int) -> tuple[int, int]:
        """(total, workgroups) for this step against a table of `row_count` rows."""
        total = int(row_count) if self.inputs else 1
        wg = max(1, int(self.workgroup_size))
        elems = max(1, int(self.elems_per_invocation))
        invocations = -(-total // elems)
        groups = max(1, -(-invocations // wg))
        return total, groups


@dataclass(slots=True)
class Column:
    name: str
    dtype: DType
    length: int
    buffer: torch.Tensor


@dataclass(slots=True)
class Table:
    row_count: int
    columns: dict[str, Column] = field(default_factory=dict)

    def __contains__(self, name: str) -> bool:
        return name in self.columns

    def require(self, name: str) -> Column:
        col = self.columns.get(name)
        if col is None:
            raise KernelError(f"column '{name}' not found in table")
        return col
