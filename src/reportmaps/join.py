"""Attach attribute rows to geometry records on the canonical key."""

from __future__ import annotations

import logging

import geopandas as gpd
import pandas as pd

from .errors import JoinError
from .util import format_name_list

_LOGGER = logging.getLogger("reportmaps.join")


def select_period(
    long_frame: pd.DataFrame,
    *,
    period_column: str,
    period: str | None,
) -> pd.DataFrame:
    """Reduce a long table to the rows of one period before joining."""
    if period is None:
        return long_frame
    if period_column not in long_frame.columns:
        raise JoinError(f"period column '{period_column}' missing from attribute table")
    selected = long_frame.loc[long_frame[period_column].astype(str) == period].reset_index(drop=True)
    if selected.empty:
        raise JoinError(f"no attribute rows for period '{period}'")
    return selected


def join_attributes(
    geometries: gpd.GeoDataFrame,
    attributes: pd.DataFrame,
    *,
    geometry_key: str,
    attribute_key: str,
) -> gpd.GeoDataFrame:
    """Keep every geometry and attach attributes where the key matches.

    Attribute rows without a geometry are dropped and logged. The output has
    exactly one record per input geometry; attribute columns are null where no
    attribute row matched.
    """
    if geometry_key not in geometries.columns:
        raise JoinError(f"geometry key column '{geometry_key}' not found")
    if attribute_key not in attributes.columns:
        raise JoinError(f"attribute key column '{attribute_key}' not found")

    dup_attr = attributes[attribute_key].duplicated(keep=False)
    if bool(dup_attr.any()):
        keys = sorted({str(item) for item in attributes.loc[dup_attr, attribute_key]})
        raise JoinError(f"attribute table has duplicate keys: {format_name_list(keys)}")

    right = attributes.copy()
    if attribute_key != geometry_key:
        right = right.rename(columns={attribute_key: geometry_key})
    clashes = [col for col in right.columns if col != geometry_key and col in geometries.columns]
    if clashes:
        right = right.rename(columns={col: f"{col}_attr" for col in clashes})
    right[geometry_key] = right[geometry_key].astype(str)

    left = geometries.copy()
    join_values = left[geometry_key].astype(str)
    left["_join_key"] = join_values
    joined = left.merge(
        right.rename(columns={geometry_key: "_join_key"}),
        on="_join_key",
        how="left",
        validate="many_to_one",
    ).drop(columns="_join_key")

    dropped = sorted(set(right[geometry_key]) - set(join_values))
    if dropped:
        _LOGGER.warning(
            "Dropped %d attribute rows with no matching geometry: %s",
            len(dropped),
            format_name_list(dropped),
        )

    out = gpd.GeoDataFrame(joined, geometry=geometries.geometry.name, crs=geometries.crs)
    if len(out) != len(geometries):
        raise JoinError(f"join produced {len(out)} records for {len(geometries)} geometries")
    return out
