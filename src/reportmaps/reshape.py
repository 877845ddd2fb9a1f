"""Wide-to-long reshaping and entity/period filters."""

from __future__ import annotations

import logging
import re
from typing import Sequence

import pandas as pd

from .errors import ReshapeError

_LOGGER = logging.getLogger("reportmaps.reshape")

_YEAR_RE = re.compile(r"(\d{4})")


def wide_column_range(frame: pd.DataFrame, first: str, last: str) -> list[str]:
    """Return the contiguous inclusive block of columns from `first` to `last`."""
    columns = [str(col) for col in frame.columns]
    try:
        start = columns.index(first)
        end = columns.index(last)
    except ValueError as exc:
        raise ReshapeError(f"column range {first}..{last} not found in table: {exc}") from exc
    if end < start:
        raise ReshapeError(f"column range {first}..{last} is reversed")
    return columns[start : end + 1]


def melt_wide(
    frame: pd.DataFrame,
    *,
    first: str | None,
    last: str | None,
    var_name: str = "period",
    value_name: str = "value",
) -> pd.DataFrame:
    """Pivot a contiguous block of measurement columns into long rows.

    Every column outside the block is carried as an id column. Rows whose value
    is absent are dropped. With no range the frame is already long and is
    returned unchanged.
    """
    if first is None or last is None:
        return frame

    frame = frame.rename(columns=str)
    value_columns = wide_column_range(frame, first, last)
    id_columns = [str(col) for col in frame.columns if str(col) not in value_columns]
    for name in (var_name, value_name):
        if name in id_columns:
            raise ReshapeError(f"output column '{name}' collides with an existing column")

    long = frame.melt(
        id_vars=id_columns,
        value_vars=value_columns,
        var_name=var_name,
        value_name=value_name,
    )
    before = len(long)
    long = long.dropna(subset=[value_name]).reset_index(drop=True)
    _LOGGER.debug(
        "Reshaped %d rows x %d columns to %d long rows (%d absent dropped)",
        len(frame),
        len(value_columns),
        len(long),
        before - len(long),
    )

    duplicated = long.duplicated(subset=[*id_columns, var_name], keep=False)
    if bool(duplicated.any()):
        sample = long.loc[duplicated, [*id_columns, var_name]].head(3).to_dict("records")
        raise ReshapeError(f"duplicate observations after reshape: {sample}")
    return long


def drop_absent(frame: pd.DataFrame, value_column: str) -> pd.DataFrame:
    """Drop rows of an already-long table whose value is absent."""
    if value_column not in frame.columns:
        raise ReshapeError(f"value column '{value_column}' not found in table")
    kept = frame.dropna(subset=[value_column]).reset_index(drop=True)
    dropped = len(frame) - len(kept)
    if dropped:
        _LOGGER.info("Dropped %d rows with absent '%s'", dropped, value_column)
    return kept


def parse_period(label: object, prefix: str = "") -> int | None:
    """Extract the year from a period label such as `y2020` or `2020`."""
    if label is None:
        return None
    text = str(label).strip()
    if prefix and text.startswith(prefix):
        text = text[len(prefix) :]
    match = _YEAR_RE.search(text)
    return int(match.group(1)) if match else None


def filter_entities(frame: pd.DataFrame, column: str, allow: Sequence[str]) -> pd.DataFrame:
    """Keep rows whose entity code is allow-listed; an empty list keeps all."""
    if not allow:
        return frame
    allowed = [str(item) for item in allow]
    keys = frame[column].astype(str)
    kept = frame.loc[keys.isin(allowed)].copy()
    missing = sorted(set(allowed) - set(keys))
    if missing:
        _LOGGER.warning("Allow-listed entities absent from data in '%s': %s", column, ", ".join(missing))
    order = {code: idx for idx, code in enumerate(allowed)}
    kept["_order"] = kept[column].astype(str).map(order)
    return kept.sort_values("_order", kind="stable").drop(columns="_order").reset_index(drop=True)


def filter_periods(
    frame: pd.DataFrame,
    column: str,
    *,
    start: int,
    end: int,
    prefix: str = "",
) -> pd.DataFrame:
    """Keep rows whose period falls in the inclusive year range."""
    years = frame[column].map(lambda label: parse_period(label, prefix))
    mask = years.notna() & years.between(start, end)
    return frame.loc[mask].reset_index(drop=True)
