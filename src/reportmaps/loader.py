"""Source file loading: spreadsheets, delimited text and vector geometry."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Sequence

import geopandas as gpd
import pandas as pd

from .config import OverlayConfig, TableSource
from .errors import LoadError

_LOGGER = logging.getLogger("reportmaps.loader")

DEFAULT_CRS = "EPSG:4326"


def first_existing_column(columns: Iterable[str], candidates: Sequence[str]) -> str | None:
    existing = {str(col).lower(): str(col) for col in columns}
    for candidate in candidates:
        match = existing.get(candidate.lower())
        if match:
            return match
    return None


def detect_key_column(frame: pd.DataFrame, candidates: Sequence[str], *, source: str) -> str:
    """Resolve a key column case-insensitively or fail listing what exists."""
    column = first_existing_column(frame.columns, candidates)
    if column is None:
        cols = ", ".join(str(c) for c in frame.columns)
        wanted = ", ".join(candidates)
        raise LoadError(f"none of the columns [{wanted}] exist; available columns: {cols}", source=source)
    return column


def load_table(source: TableSource) -> pd.DataFrame:
    """Read a spreadsheet sheet or delimited text file into a raw table.

    Headers always come back as text. Declared columns of delimited files are
    read as text so sentinel strings can be blanked before numeric coercion;
    spreadsheet cells keep their native types. A value that still cannot be
    coerced fails the load instead of silently becoming NaN.
    """
    path = source.path
    if not path.exists():
        raise LoadError("file not found", source=str(path))

    raw_dtypes = {column: str for column in (source.dtypes or {})}
    try:
        if source.is_spreadsheet:
            # Spreadsheet cells keep their native types; headers may be numbers.
            frame = pd.read_excel(
                path,
                sheet_name=source.sheet if source.sheet is not None else 0,
                skiprows=source.skip_rows,
            )
        else:
            frame = pd.read_csv(
                path,
                sep=source.delimiter,
                skiprows=source.skip_rows,
                dtype=raw_dtypes or None,
            )
    except (OSError, ValueError, ImportError) as exc:
        raise LoadError(f"unreadable table: {exc}", source=str(path)) from exc

    frame = frame.rename(columns=str)
    _LOGGER.debug("Read %d rows x %d columns from %s", len(frame), len(frame.columns), path)
    if source.dtypes:
        frame = _blank_sentinel_cells(frame, source)
        frame = _coerce_declared_types(frame, source)
    return frame


def _blank_sentinel_cells(frame: pd.DataFrame, source: TableSource) -> pd.DataFrame:
    numeric_cols = [col for col, kind in (source.dtypes or {}).items() if kind in {"float", "int"}]
    missing = [col for col in (source.dtypes or {}) if col not in frame.columns]
    if missing:
        raise LoadError(f"declared columns missing from table: {', '.join(missing)}", source=str(source.path))
    if not source.sentinels or not numeric_cols:
        return frame

    sentinels = {item.casefold() for item in source.sentinels}
    out = frame.copy()
    blanked = 0
    for col in numeric_cols:
        mask = out[col].map(lambda value: isinstance(value, str) and value.strip().casefold() in sentinels)
        blanked += int(mask.sum())
        out.loc[mask.astype(bool), col] = None
    if blanked:
        _LOGGER.info("Marked %d sentinel cells as absent in %s", blanked, source.path.name)
    return out


def _coerce_declared_types(frame: pd.DataFrame, source: TableSource) -> pd.DataFrame:
    out = frame.copy()
    for col, kind in (source.dtypes or {}).items():
        if kind == "str":
            out[col] = out[col].astype("string")
            continue
        raw = out[col]
        text = raw.map(lambda value: value.strip().replace(",", "") if isinstance(value, str) else value)
        coerced = pd.to_numeric(text, errors="coerce")
        present = text.map(lambda value: not (isinstance(value, str) and value == "") and not pd.isna(value))
        bad = present.astype(bool) & coerced.isna()
        if bool(bad.any()):
            first_bad = raw[bad].iloc[0]
            raise LoadError(
                f"column '{col}' declared {kind} but value {first_bad!r} cannot be parsed "
                f"({int(bad.sum())} bad cells)",
                source=str(source.path),
            )
        if kind == "int":
            try:
                coerced = coerced.astype("Int64")
            except (TypeError, ValueError) as exc:
                raise LoadError(
                    f"column '{col}' declared int but holds non-integer values",
                    source=str(source.path),
                ) from exc
        out[col] = coerced
    return out


def load_geometry(path: Path, *, key_column: str | None = None) -> gpd.GeoDataFrame:
    """Load a vector geometry file, dropping null or empty shapes."""
    if not path.exists():
        raise LoadError("file not found", source=str(path))
    try:
        frame = gpd.read_file(path)
    except Exception as exc:
        raise LoadError(f"unreadable geometry file: {exc}", source=str(path)) from exc
    return clean_geometry(frame, key_column=key_column, source=str(path))


def clean_geometry(
    frame: gpd.GeoDataFrame,
    *,
    key_column: str | None,
    source: str,
) -> gpd.GeoDataFrame:
    if frame.crs is None:
        _LOGGER.warning("Geometry source %s has no CRS; assuming %s", source, DEFAULT_CRS)
        frame = frame.set_crs(DEFAULT_CRS)

    valid = frame.geometry.notna() & ~frame.geometry.is_empty
    dropped = int((~valid).sum())
    if dropped:
        _LOGGER.warning("Dropped %d null/empty geometries from %s", dropped, source)
        frame = frame.loc[valid].reset_index(drop=True)

    if key_column is not None:
        resolved = detect_key_column(frame, [key_column], source=source)
        if resolved != key_column:
            frame = frame.rename(columns={resolved: key_column})
    return frame


def load_overlay(overlay: OverlayConfig) -> gpd.GeoDataFrame:
    """Load an overlay layer; delimited text is read as lon/lat points."""
    if overlay.path.suffix.casefold() not in {".csv", ".tsv", ".txt"}:
        return load_geometry(overlay.path)

    source = TableSource(
        path=overlay.path,
        delimiter="\t" if overlay.path.suffix.casefold() == ".tsv" else ",",
        dtypes={overlay.lon_column: "float", overlay.lat_column: "float"},
    )
    table = load_table(source).dropna(subset=[overlay.lon_column, overlay.lat_column])
    return gpd.GeoDataFrame(
        table,
        geometry=gpd.points_from_xy(table[overlay.lon_column], table[overlay.lat_column]),
        crs=DEFAULT_CRS,
    )
