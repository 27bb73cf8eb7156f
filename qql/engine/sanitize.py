"""Pre-upload sanitization of numeric columns.

For each requested column:
- sort the frame by timestamp if it is not already sorted,
- cast to float32,
- forward-fill then backward-fill missing and non-finite values,
- anything still missing (an all-null column) becomes 0.0.

The pass is idempotent.
"""

from __future__ import annotations

from typing import Iterable

import numpy as np
import pandas as pd

from qql.errors import DispatchError

TIME_COLUMN = "timestamp"
CORE_PRICE_COLUMNS = ("open", "high", "low", "close")


def sort_by_time(df: pd.DataFrame, time_column: str = TIME_COLUMN) -> pd.DataFrame:
    if time_column in df.columns and not df[time_column].is_monotonic_increasing:
        return df.sort_values(time_column, kind="mergesort").reset_index(drop=True)
    return df.reset_index(drop=True)


def sanitize_series(series: pd.Series) -> pd.Series:
    if not (pd.api.types.is_numeric_dtype(series) or pd.api.types.is_bool_dtype(series)):
        raise DispatchError(f"unsupported dtype {series.dtype} for column '{series.name}'")
    values = series.to_numpy(dtype=np.float64, na_value=np.nan)
    values = np.where(np.isfinite(values), values, np.nan)
    cleaned = pd.Series(values, index=series.index, name=series.name).ffill().bfill().fillna(0.0)
    return cleaned.astype(np.float32)


def sanitize_for_gpu(df: pd.DataFrame, columns: Iterable[str], *, time_column: str = TIME_COLUMN) -> pd.DataFrame:
    out = sort_by_time(df, time_column).copy()
    for name in columns:
        if name not in out.columns:
            raise DispatchError(f"column '{name}' not found")
        out[name] = sanitize_series(out[name])
    return out
