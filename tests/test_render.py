from __future__ import annotations

import geopandas as gpd
import matplotlib.pyplot as plt
import pandas as pd
import pytest
from matplotlib.collections import LineCollection, PatchCollection, PathCollection
from shapely.geometry import LineString, Point

from reportmaps.config import RenderConfig
from reportmaps.errors import RenderError
from reportmaps.render import ChartRenderer, ChartRequest, MapRenderer, MapRequest, OverlayLayer


def _joined(regions: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    return regions.assign(share_pct=[25.0, None, 75.0])


def test_map_layers_follow_fixed_order(render_cfg: RenderConfig, regions: gpd.GeoDataFrame) -> None:
    lines = gpd.GeoDataFrame(geometry=[LineString([(0, 0), (2, 1)])], crs="EPSG:4326")
    points = gpd.GeoDataFrame(
        {"city": ["North", "South"]},
        geometry=[Point(0.5, 1.5), Point(1.5, 0.5)],
        crs="EPSG:4326",
    )
    req = MapRequest(
        title="Share",
        base=_joined(regions),
        metric_column="share_pct",
        low_color="#fee8c8",
        high_color="#b30000",
        overlays=(
            OverlayLayer(kind="points", frame=points, label_column="city"),
            OverlayLayer(kind="lines", frame=lines),
        ),
        region_label_column="region",
        caption="Source: tests",
    )

    rendered = MapRenderer(render_cfg).render(req)
    try:
        ax = rendered.figure.axes[0]
        fill_z = {c.get_zorder() for c in ax.collections if isinstance(c, PatchCollection)}
        line_z = {c.get_zorder() for c in ax.collections if isinstance(c, LineCollection)}
        point_z = {c.get_zorder() for c in ax.collections if isinstance(c, PathCollection)}
        label_z = {text.get_zorder() for text in ax.texts}

        assert max(fill_z) < min(line_z)
        assert max(line_z) < min(point_z)
        assert max(point_z) < min(label_z)
        assert {text.get_text() for text in ax.texts} == {"Alpha", "Beta", "Gamma", "North", "South"}
        assert rendered.label_stats.labels == 5
    finally:
        plt.close(rendered.figure)


def test_map_without_metric_values_raises(render_cfg: RenderConfig, regions: gpd.GeoDataFrame) -> None:
    req = MapRequest(
        title="Share",
        base=regions.assign(share_pct=[None, None, None]),
        metric_column="share_pct",
        low_color="#ffffff",
        high_color="#000000",
    )
    with pytest.raises(RenderError):
        MapRenderer(render_cfg).render(req)


def test_map_missing_metric_column_raises(render_cfg: RenderConfig, regions: gpd.GeoDataFrame) -> None:
    req = MapRequest(title="Share", base=regions, metric_column="share_pct", low_color="#fff", high_color="#000")
    with pytest.raises(RenderError, match="share_pct"):
        MapRenderer(render_cfg).render(req)


@pytest.mark.parametrize("style", ["line", "bar"])
def test_chart_styles(render_cfg: RenderConfig, style: str) -> None:
    frame = pd.DataFrame(
        {
            "line": ["Red", "Red", "Blue", "Blue"],
            "year": ["y2020", "y2021", "y2020", "y2021"],
            "riders": [41.7, 55.2, 33.9, 44.0],
        }
    )
    req = ChartRequest(
        title="Ridership",
        frame=frame,
        entity_column="line",
        period_column="year",
        value_column="riders",
        style=style,
        y_label="Riders (millions)",
        period_prefix="y",
    )

    rendered = ChartRenderer(render_cfg).render(req)
    try:
        ax = rendered.figure.axes[0]
        if style == "line":
            assert len(ax.get_lines()) == 2
            assert ax.get_ylabel() == "Riders (millions)"
        else:
            assert len(ax.patches) == 2
            assert ax.get_xlabel() == "Riders (millions)"
    finally:
        plt.close(rendered.figure)


def test_chart_missing_column_raises(render_cfg: RenderConfig) -> None:
    req = ChartRequest(
        title="Empty",
        frame=pd.DataFrame({"line": ["Red"]}),
        entity_column="line",
        period_column="year",
        value_column="riders",
    )
    with pytest.raises(RenderError):
        ChartRenderer(render_cfg).render(req)
