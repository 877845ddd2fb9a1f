"""Derived metrics computed on joined records right before rendering."""

from __future__ import annotations

import pandas as pd

from .errors import DegenerateAggregateError


def share_of_total(
    frame: pd.DataFrame,
    column: str,
    *,
    out_column: str = "share_pct",
) -> pd.DataFrame:
    """Add each record's percentage share of the column total.

    Null inputs stay null. A zero or all-null total has no meaningful share and
    raises instead of producing NaN/inf.
    """
    if column not in frame.columns:
        raise DegenerateAggregateError(f"metric source column '{column}' not found")
    values = pd.to_numeric(frame[column], errors="coerce").astype("float64")
    present = values.dropna()
    if present.empty:
        raise DegenerateAggregateError(f"column '{column}' has no non-null values")
    total = float(present.sum())
    if total == 0.0:
        raise DegenerateAggregateError(f"column '{column}' sums to zero")

    out = frame.copy()
    out[out_column] = values * 100.0 / total
    return out
