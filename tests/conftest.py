from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import geopandas as gpd
import matplotlib
import pytest
import yaml
from shapely.geometry import box

from reportmaps.config import AppConfig, LabelsConfig, RenderConfig, load_config

matplotlib.use("Agg")


@pytest.fixture
def render_cfg() -> RenderConfig:
    return RenderConfig(
        size_in=(11.0, 8.5),
        dpi=72,
        formats=("png", "svg"),
        font_family="DejaVu Sans",
        missing_color="#d9d9d9",
        edge_color="#ffffff",
        edge_width=0.4,
        labels=LabelsConfig(font_size=8.0, padding_px=2, max_iterations=100, step_px=4.0),
    )


@pytest.fixture
def regions() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {"region": ["Alpha", "Beta", "Gamma"]},
        geometry=[box(0, 0, 1, 1), box(1, 0, 2, 1), box(0, 1, 1, 2)],
        crs="EPSG:4326",
    )


def _map_viz(name: str, table: str, **extra: Any) -> dict[str, Any]:
    viz: dict[str, Any] = {
        "name": name,
        "kind": "map",
        "title": f"{name} map",
        "table": {
            "path": table,
            "dtypes": {"y2020": "float", "y2021": "float"},
            "sentinels": ["Not Available"],
        },
        "key_column": "region",
        "key_map": "test_regions",
        "reshape": {"first": "y2020", "last": "y2021"},
        "period": "y2021",
        "boundaries": {"country": "TST", "level": "ADM1", "key_column": "region"},
        "metric": {"column": "value"},
        "label_regions": True,
    }
    viz.update(extra)
    return viz


def _chart_viz(name: str, table: str) -> dict[str, Any]:
    return {
        "name": name,
        "kind": "chart",
        "chart": "line",
        "title": f"{name} chart",
        "table": {
            "path": table,
            "dtypes": {"y2020": "float", "y2021": "float"},
            "sentinels": ["Not Available"],
        },
        "key_column": "region",
        "reshape": {"first": "y2020", "last": "y2021", "var_name": "year", "value_name": "riders"},
        "years": {"start": 2020, "end": 2021, "prefix": "y"},
        "y_label": "Riders",
    }


@pytest.fixture
def project_dir(tmp_path: Path, regions: gpd.GeoDataFrame) -> Path:
    """A self-contained project: data files, key maps and boundary fixtures."""
    data = tmp_path / "data"
    fixtures = tmp_path / "fixtures"
    data.mkdir()
    fixtures.mkdir()
    regions.to_file(fixtures / "TST_ADM1.geojson", driver="GeoJSON")
    (data / "values.csv").write_text(
        "region,y2020,y2021\n"
        "alpha-raw,10,20\n"
        "Beta,30,Not Available\n"
        "Gamma,50,60\n"
        "Nowhere,5,5\n",
        encoding="utf-8",
    )
    (data / "zeros.csv").write_text(
        "region,y2020,y2021\nAlpha,0,0\nBeta,0,0\n",
        encoding="utf-8",
    )
    (data / "key_maps.yaml").write_text(
        yaml.safe_dump({"test_regions": {"alpha-raw": "Alpha"}}),
        encoding="utf-8",
    )
    return tmp_path


@pytest.fixture
def write_config(project_dir: Path) -> Callable[..., Path]:
    def _write(visualizations: list[dict[str, Any]] | None = None, **geometry: Any) -> Path:
        if visualizations is None:
            visualizations = [
                _map_viz("share_map", "data/values.csv"),
                _chart_viz("trend_chart", "data/values.csv"),
            ]
        geometry_cfg = {
            "provider": "file",
            "base_url": "https://example.test/api",
            "fixtures_dir": "fixtures",
            "user_agent": "reportmaps-tests",
        }
        geometry_cfg.update(geometry)
        raw = {
            "project": {"title": "Test report", "author": "Tests"},
            "paths": {
                "data_dir": "data",
                "key_maps": "data/key_maps.yaml",
                "output_dir": "output/figures",
                "report_html": "output/report/index.html",
                "manifests_dir": "output/manifests",
                "logs_dir": "logs",
                "cache_dir": "cache",
            },
            "render": {
                "size_in": [11, 8.5],
                "dpi": 40,
                "formats": ["png", "svg"],
                "font_family": "DejaVu Sans",
                "missing_color": "#d9d9d9",
                "edge_color": "#ffffff",
                "edge_width": 0.4,
                "labels": {"font_size": 8, "padding_px": 2, "max_iterations": 50, "step_px": 4.0},
            },
            "geometry": geometry_cfg,
            "build": {"write_manifest": True, "write_report": True},
            "visualizations": visualizations,
        }
        path = project_dir / "config.yaml"
        path.write_text(yaml.safe_dump(raw, sort_keys=False), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def app_config(write_config: Callable[..., Path]) -> AppConfig:
    return load_config(write_config())


@pytest.fixture
def map_viz() -> Callable[..., dict[str, Any]]:
    return _map_viz


@pytest.fixture
def chart_viz() -> Callable[..., dict[str, Any]]:
    return _chart_viz
