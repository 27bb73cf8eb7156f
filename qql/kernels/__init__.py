"""Compute backend for QQL.

A `ComputeRuntime` owns one torch device and a kernel cache. Work is described
declaratively as `KernelStep`s (inputs, outputs, dispatch shape, uniforms) and
executed against a device-resident `Table`.

Two kernel libraries honor the same execution contract:
- `qql.kernels.portable`: torch reference kernels (any device)
- `qql.kernels.triton`: Triton kernels (CUDA only)
"""

from __future__ import annotations

__all__: list[str] = []
