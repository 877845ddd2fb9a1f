from __future__ import annotations

from pathlib import Path

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import Polygon, box

from reportmaps.config import OverlayConfig, TableSource
from reportmaps.errors import LoadError
from reportmaps.loader import clean_geometry, detect_key_column, load_geometry, load_overlay, load_table
from reportmaps.reshape import melt_wide


def test_csv_with_sentinel_cells(tmp_path: Path) -> None:
    path = tmp_path / "ridership.csv"
    path.write_text(
        "agency,y2020,y2021\nMetro,\"1,200\",1300\nBus,900,Not Available\n",
        encoding="utf-8",
    )
    source = TableSource(
        path=path,
        dtypes={"y2020": "float", "y2021": "float"},
        sentinels=("not available",),
    )

    frame = load_table(source)

    assert frame["agency"].tolist() == ["Metro", "Bus"]
    assert frame["y2020"].tolist() == [1200.0, 900.0]
    assert frame.loc[0, "y2021"] == 1300.0
    assert pd.isna(frame.loc[1, "y2021"])


def test_spreadsheet_with_missing_cell_reshapes_to_one_row(tmp_path: Path) -> None:
    path = tmp_path / "stats.xlsx"
    pd.DataFrame(
        {"code": ["A", "B"], "name": ["Alpha", "Beta"], "y2020": [1.5, 2.5], "y2021": [3.5, None]}
    ).to_excel(path, sheet_name="data", index=False)
    source = TableSource(path=path, sheet="data", dtypes={"y2020": "float", "y2021": "float"})

    long = melt_wide(load_table(source), first="y2020", last="y2021")

    assert len(long) == 3
    assert long.loc[long["code"] == "B", "period"].tolist() == ["y2020"]


def test_spreadsheet_with_numeric_year_headers(tmp_path: Path) -> None:
    path = tmp_path / "gdp.xlsx"
    pd.DataFrame(
        {"country": ["Aland", "Borduria"], 2020: [1.5, ".."], 2021: [2.0, 3.0]}
    ).to_excel(path, index=False)
    source = TableSource(path=path, dtypes={"2020": "float", "2021": "float"}, sentinels=("..",))

    frame = load_table(source)
    long = melt_wide(frame, first="2020", last="2021", var_name="year")

    assert list(frame.columns) == ["country", "2020", "2021"]
    assert len(long) == 3
    assert long.loc[long["country"] == "Borduria", "year"].tolist() == ["2021"]


def test_uncoercible_value_fails_the_load(tmp_path: Path) -> None:
    path = tmp_path / "bad.csv"
    path.write_text("code,value\nA,1\nB,Not Available\n", encoding="utf-8")

    with pytest.raises(LoadError) as excinfo:
        load_table(TableSource(path=path, dtypes={"value": "float"}))

    assert "Not Available" in excinfo.value.message
    assert excinfo.value.source == str(path)
    assert excinfo.value.stage == "load"


def test_int_columns_are_nullable_integers(tmp_path: Path) -> None:
    path = tmp_path / "counts.csv"
    path.write_text("code;count\nA;3\nB;\n", encoding="utf-8")

    frame = load_table(TableSource(path=path, delimiter=";", dtypes={"count": "int"}))

    assert str(frame["count"].dtype) == "Int64"
    assert frame["count"].iloc[0] == 3
    assert pd.isna(frame["count"].iloc[1])


def test_declared_column_missing_from_table(tmp_path: Path) -> None:
    path = tmp_path / "t.csv"
    path.write_text("code,value\nA,1\n", encoding="utf-8")
    with pytest.raises(LoadError, match="declared columns missing"):
        load_table(TableSource(path=path, dtypes={"amount": "float"}))


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(LoadError, match="file not found"):
        load_table(TableSource(path=tmp_path / "absent.csv"))
    with pytest.raises(LoadError, match="file not found"):
        load_geometry(tmp_path / "absent.geojson")


def test_detect_key_column_is_case_insensitive() -> None:
    frame = pd.DataFrame({"ShapeName": ["a"], "x": [1]})
    assert detect_key_column(frame, ["shapename"], source="test") == "ShapeName"
    with pytest.raises(LoadError, match="available columns"):
        detect_key_column(frame, ["name_en"], source="test")


def test_clean_geometry_drops_empty_and_sets_crs() -> None:
    frame = gpd.GeoDataFrame(
        {"NAME": ["a", "b", "c"]},
        geometry=[box(0, 0, 1, 1), None, Polygon()],
    )

    cleaned = clean_geometry(frame, key_column="name", source="test")

    assert len(cleaned) == 1
    assert cleaned.crs is not None and cleaned.crs.to_epsg() == 4326
    assert "name" in cleaned.columns


def test_load_geometry_round_trip(tmp_path: Path, regions: gpd.GeoDataFrame) -> None:
    path = tmp_path / "regions.geojson"
    regions.to_file(path, driver="GeoJSON")

    loaded = load_geometry(path, key_column="region")

    assert sorted(loaded["region"]) == ["Alpha", "Beta", "Gamma"]
    assert loaded.crs.to_epsg() == 4326


def test_load_overlay_points_from_csv(tmp_path: Path) -> None:
    path = tmp_path / "ports.csv"
    path.write_text("port,lon,lat\nNagoya,136.88,35.08\nNowhere,,\n", encoding="utf-8")
    overlay = OverlayConfig(
        kind="points",
        path=path,
        color="#000000",
        width=1.0,
        marker_size=10.0,
        lon_column="lon",
        lat_column="lat",
        label_column="port",
    )

    frame = load_overlay(overlay)

    assert frame["port"].tolist() == ["Nagoya"]
    assert frame.geometry.iloc[0].x == pytest.approx(136.88)
