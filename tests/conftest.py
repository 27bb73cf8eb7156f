from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from qql.kernels.compute import ComputeRuntime

DAY = 86400
JAN_1_2024 = 1704067200


@pytest.fixture(scope="session")
def runtime() -> ComputeRuntime:
    return ComputeRuntime("cpu", "torch")


def make_ohlc(n: int = 40, *, seed: int = 0, start: int = JAN_1_2024) -> pd.DataFrame:
    """Daily bars with a positive random-walk close."""
    rng = np.random.default_rng(seed)
    close = 100.0 * np.exp(np.cumsum(rng.normal(0.0, 0.01, size=n)))
    open_ = close * (1.0 + rng.normal(0.0, 0.002, size=n))
    high = np.maximum(open_, close) * 1.005
    low = np.minimum(open_, close) * 0.995
    return pd.DataFrame(
        {
            "timestamp": start + DAY * np.arange(n, dtype=np.int64),
            "open": open_,
            "high": high,
            "low": low,
            "close": close,
            "volume": rng.integers(1_000, 10_000, size=n).astype(np.uint64),
        }
    )


@pytest.fixture
def ohlc() -> pd.DataFrame:
    return make_ohlc()
