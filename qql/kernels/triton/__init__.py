"""CUDA/Triton kernels for the QQL compute runtime.

Same entry points and launch contract as `qql.kernels.portable`. All tensors
are expected to be CUDA and contiguous; f32 columns only.
"""

from __future__ import annotations

__all__: list[str] = []
