"""Choropleth map and chart rendering into in-memory matplotlib figures."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Sequence

import geopandas as gpd
import pandas as pd

from .config import RenderConfig
from .errors import RenderError
from .labels import PixelBBox, repel_labels
from .reshape import parse_period

_LOGGER = logging.getLogger("reportmaps.render")

# Fixed layer order: fill, line overlays, point overlays, labels.
_Z_FILL = 1
_Z_LINES = 2
_Z_POINTS = 3
_Z_LEADERS = 4
_Z_LABELS = 5

_LABEL_OFFSET_PX = (4.0, 3.0)
_LEADER_MIN_PX = 10.0
_EXTENT_PADDING_RATIO = 0.03
_DEFAULT_PALETTE = (
    "#1f77b4",
    "#ff7f0e",
    "#2ca02c",
    "#d62728",
    "#9467bd",
    "#8c564b",
    "#e377c2",
    "#7f7f7f",
    "#bcbd22",
    "#17becf",
)


@dataclass(frozen=True, slots=True)
class OverlayLayer:
    kind: str
    frame: gpd.GeoDataFrame
    color: str = "#222222"
    width: float = 1.0
    marker_size: float = 18.0
    label_column: str | None = None


@dataclass(frozen=True, slots=True)
class MapRequest:
    title: str
    base: gpd.GeoDataFrame
    metric_column: str
    low_color: str
    high_color: str
    overlays: tuple[OverlayLayer, ...] = ()
    region_label_column: str | None = None
    caption: str | None = None
    legend_label: str = "Share of total (%)"


@dataclass(frozen=True, slots=True)
class ChartRequest:
    title: str
    frame: pd.DataFrame
    entity_column: str
    period_column: str
    value_column: str
    style: str = "line"
    palette: tuple[str, ...] = ()
    y_label: str | None = None
    caption: str | None = None
    period_prefix: str = ""


@dataclass(frozen=True, slots=True)
class _LabelItem:
    x: float
    y: float
    text: str


@dataclass(slots=True)
class LabelLayoutStats:
    labels: int = 0
    iterations: int = 0
    converged: bool = True
    residual_overlap: float = 0.0


@dataclass(slots=True)
class RenderedFigure:
    figure: Any
    label_stats: LabelLayoutStats = field(default_factory=LabelLayoutStats)


class MapRenderer:
    """Layered choropleth renderer with repelled labels."""

    def __init__(self, cfg: RenderConfig) -> None:
        self.cfg = cfg

    def render(self, req: MapRequest) -> RenderedFigure:
        plt, transforms, colors, cm = _require_matplotlib()
        if req.metric_column not in req.base.columns:
            raise RenderError(f"metric column '{req.metric_column}' missing from joined records")
        if req.base.empty:
            raise RenderError("no geometry records to render")
        if not bool(pd.to_numeric(req.base[req.metric_column], errors="coerce").notna().any()):
            raise RenderError(f"metric column '{req.metric_column}' has no values to shade")

        fig, ax = plt.subplots(figsize=self.cfg.size_in, dpi=self.cfg.dpi)
        try:
            cmap = colors.LinearSegmentedColormap.from_list("low_high", [req.low_color, req.high_color])
            values = pd.to_numeric(req.base[req.metric_column], errors="coerce")
            vmin = float(values.min())
            vmax = float(values.max())
            if math.isclose(vmin, vmax):
                vmax = vmin + 1.0
            self._draw_fill(ax=ax, base=req.base, values=values, cmap=cmap, vmin=vmin, vmax=vmax)

            overlays = tuple(_to_crs(layer, req.base.crs) for layer in req.overlays)
            for layer in overlays:
                if layer.kind == "lines":
                    layer.frame.plot(ax=ax, color=layer.color, linewidth=layer.width, zorder=_Z_LINES)
            for layer in overlays:
                if layer.kind == "points":
                    points = _point_coords(layer.frame)
                    ax.scatter(
                        [x for x, _ in points],
                        [y for _, y in points],
                        s=layer.marker_size,
                        c=layer.color,
                        linewidths=0.0,
                        zorder=_Z_POINTS,
                    )

            self._fit_extent(ax=ax, base=req.base)
            ax.axis("off")
            ax.set_title(req.title, loc="left", fontsize=16, family=self.cfg.font_family)
            mappable = cm.ScalarMappable(norm=colors.Normalize(vmin=vmin, vmax=vmax), cmap=cmap)
            fig.colorbar(mappable, ax=ax, shrink=0.6, pad=0.01, label=req.legend_label)
            _draw_caption(fig, req.caption, self.cfg.font_family)

            stats = self._place_labels(
                fig=fig,
                ax=ax,
                transforms=transforms,
                items=_collect_labels(req, overlays),
                markers=[
                    (x, y, layer.marker_size)
                    for layer in overlays
                    if layer.kind == "points"
                    for x, y in _point_coords(layer.frame)
                ],
            )
        except Exception:
            plt.close(fig)
            raise
        return RenderedFigure(figure=fig, label_stats=stats)

    def _draw_fill(
        self,
        *,
        ax: Any,
        base: gpd.GeoDataFrame,
        values: pd.Series,
        cmap: Any,
        vmin: float,
        vmax: float,
    ) -> None:
        has_value = values.notna()
        if bool((~has_value).any()):
            base.loc[~has_value].plot(
                ax=ax,
                color=self.cfg.missing_color,
                edgecolor=self.cfg.edge_color,
                linewidth=self.cfg.edge_width,
                zorder=_Z_FILL,
            )
        filled = base.loc[has_value].copy()
        filled["_metric"] = values.loc[has_value].astype(float)
        filled.plot(
            ax=ax,
            column="_metric",
            cmap=cmap,
            vmin=vmin,
            vmax=vmax,
            edgecolor=self.cfg.edge_color,
            linewidth=self.cfg.edge_width,
            zorder=_Z_FILL,
        )

    def _fit_extent(self, *, ax: Any, base: gpd.GeoDataFrame) -> None:
        min_x, min_y, max_x, max_y = [float(item) for item in base.total_bounds]
        pad_x = max((max_x - min_x) * _EXTENT_PADDING_RATIO, 1e-6)
        pad_y = max((max_y - min_y) * _EXTENT_PADDING_RATIO, 1e-6)
        ax.set_xlim(min_x - pad_x, max_x + pad_x)
        ax.set_ylim(min_y - pad_y, max_y + pad_y)

    def _place_labels(
        self,
        *,
        fig: Any,
        ax: Any,
        transforms: Any,
        items: Sequence[_LabelItem],
        markers: Sequence[tuple[float, float, float]],
    ) -> LabelLayoutStats:
        if not items:
            return LabelLayoutStats()
        shift = transforms.ScaledTranslation(
            _LABEL_OFFSET_PX[0] / fig.dpi,
            _LABEL_OFFSET_PX[1] / fig.dpi,
            fig.dpi_scale_trans,
        )
        artists = [
            ax.text(
                item.x,
                item.y,
                item.text,
                transform=ax.transData + shift,
                fontsize=self.cfg.labels.font_size,
                family=self.cfg.font_family,
                ha="left",
                va="bottom",
                zorder=_Z_LABELS,
                clip_on=False,
            )
            for item in items
        ]
        fig.canvas.draw()
        renderer = fig.canvas.get_renderer()
        boxes: list[PixelBBox] = []
        for artist in artists:
            bbox = artist.get_window_extent(renderer=renderer)
            boxes.append((float(bbox.x0), float(bbox.y0), float(bbox.x1), float(bbox.y1)))
        obstacles = [_marker_bbox(ax, x, y, size, fig.dpi) for x, y, size in markers]

        result = repel_labels(
            boxes,
            obstacles,
            max_iterations=self.cfg.labels.max_iterations,
            step_px=self.cfg.labels.step_px,
            padding_px=float(self.cfg.labels.padding_px),
        )
        if not result.converged:
            _LOGGER.warning(
                "Label layout kept %.0f px^2 of overlap after %d iterations",
                result.overlap,
                result.iterations,
            )

        to_data = ax.transData.inverted()
        for item, artist, before, after in zip(items, artists, boxes, result.boxes):
            dx = after[0] - before[0]
            dy = after[1] - before[1]
            if dx == 0.0 and dy == 0.0:
                continue
            anchor_x, anchor_y = ax.transData.transform((item.x, item.y))
            new_x, new_y = to_data.transform((anchor_x + dx, anchor_y + dy))
            artist.set_position((float(new_x), float(new_y)))
            if math.hypot(dx, dy) >= _LEADER_MIN_PX:
                ax.plot(
                    [item.x, float(new_x)],
                    [item.y, float(new_y)],
                    color="#555555",
                    linewidth=0.5,
                    zorder=_Z_LEADERS,
                )
        return LabelLayoutStats(
            labels=len(items),
            iterations=result.iterations,
            converged=result.converged,
            residual_overlap=result.overlap,
        )


class ChartRenderer:
    """Line or bar charts drawn from a long table."""

    def __init__(self, cfg: RenderConfig) -> None:
        self.cfg = cfg

    def render(self, req: ChartRequest) -> RenderedFigure:
        plt, _, _, _ = _require_matplotlib()
        for column in (req.entity_column, req.period_column, req.value_column):
            if column not in req.frame.columns:
                raise RenderError(f"chart column '{column}' missing from table")
        if req.frame.empty:
            raise RenderError("no rows left to chart")

        palette = req.palette or _DEFAULT_PALETTE
        fig, ax = plt.subplots(figsize=self.cfg.size_in, dpi=self.cfg.dpi)
        try:
            if req.style == "bar":
                self._draw_bars(ax=ax, req=req, palette=palette)
            else:
                self._draw_lines(ax=ax, req=req, palette=palette)
            ax.set_title(req.title, loc="left", fontsize=16, family=self.cfg.font_family)
            if req.y_label and req.style == "bar":
                ax.set_xlabel(req.y_label)
            elif req.y_label:
                ax.set_ylabel(req.y_label)
            for side in ("top", "right"):
                ax.spines[side].set_visible(False)
            _draw_caption(fig, req.caption, self.cfg.font_family)
        except Exception:
            plt.close(fig)
            raise
        return RenderedFigure(figure=fig)

    def _draw_lines(self, *, ax: Any, req: ChartRequest, palette: Sequence[str]) -> None:
        frame = req.frame.copy()
        frame["_x"] = frame[req.period_column].map(lambda label: parse_period(label, req.period_prefix))
        numeric_x = bool(frame["_x"].notna().all())
        if not numeric_x:
            frame["_x"] = frame[req.period_column].astype(str)
        for idx, (entity, group) in enumerate(frame.groupby(req.entity_column, sort=False)):
            group = group.sort_values("_x")
            ax.plot(
                group["_x"].tolist(),
                pd.to_numeric(group[req.value_column], errors="coerce").tolist(),
                label=str(entity),
                color=palette[idx % len(palette)],
                linewidth=1.8,
            )
        ax.legend(frameon=False, loc="upper left", bbox_to_anchor=(1.0, 1.0))
        ax.grid(axis="y", color="#e5e5e5", linewidth=0.6)

    def _draw_bars(self, *, ax: Any, req: ChartRequest, palette: Sequence[str]) -> None:
        frame = req.frame.copy()
        frame["_x"] = frame[req.period_column].map(lambda label: parse_period(label, req.period_prefix))
        if bool(frame["_x"].notna().any()):
            latest = frame["_x"].max()
            frame = frame.loc[frame["_x"] == latest]
        else:
            latest_label = sorted(frame[req.period_column].astype(str))[-1]
            frame = frame.loc[frame[req.period_column].astype(str) == latest_label]
        frame = frame.assign(_v=pd.to_numeric(frame[req.value_column], errors="coerce"))
        frame = frame.sort_values("_v")
        ax.barh(
            frame[req.entity_column].astype(str).tolist(),
            frame["_v"].tolist(),
            color=[palette[idx % len(palette)] for idx in range(len(frame))],
        )
        ax.grid(axis="x", color="#e5e5e5", linewidth=0.6)


def _collect_labels(req: MapRequest, overlays: Sequence[OverlayLayer]) -> list[_LabelItem]:
    items: list[_LabelItem] = []
    if req.region_label_column is not None and req.region_label_column in req.base.columns:
        for text, point in zip(req.base[req.region_label_column], req.base.geometry.representative_point()):
            if text is None or pd.isna(text):
                continue
            items.append(_LabelItem(x=float(point.x), y=float(point.y), text=str(text)))
    for layer in overlays:
        if layer.kind != "points" or layer.label_column is None:
            continue
        if layer.label_column not in layer.frame.columns:
            raise RenderError(f"label column '{layer.label_column}' missing from point overlay")
        for text, (x, y) in zip(layer.frame[layer.label_column], _point_coords(layer.frame)):
            if text is None or pd.isna(text):
                continue
            items.append(_LabelItem(x=x, y=y, text=str(text)))
    return items


def _point_coords(frame: gpd.GeoDataFrame) -> list[tuple[float, float]]:
    points = frame.geometry.representative_point()
    return [(float(point.x), float(point.y)) for point in points]


def _marker_bbox(ax: Any, x: float, y: float, size_pt2: float, dpi: float) -> PixelBBox:
    # scatter sizes are in points^2
    half = math.sqrt(max(size_pt2, 0.0)) / 2.0 * dpi / 72.0
    px, py = ax.transData.transform((x, y))
    return (float(px) - half, float(py) - half, float(px) + half, float(py) + half)


def _to_crs(layer: OverlayLayer, crs: Any) -> OverlayLayer:
    if crs is None or layer.frame.crs is None or layer.frame.crs == crs:
        return layer
    return OverlayLayer(
        kind=layer.kind,
        frame=layer.frame.to_crs(crs),
        color=layer.color,
        width=layer.width,
        marker_size=layer.marker_size,
        label_column=layer.label_column,
    )


def _draw_caption(fig: Any, caption: str | None, font_family: str) -> None:
    if not caption:
        return
    fig.text(0.01, 0.01, caption, fontsize=8, color="#555555", family=font_family, ha="left", va="bottom")


def _require_matplotlib() -> tuple[Any, Any, Any, Any]:
    try:
        import matplotlib

        matplotlib.use("Agg", force=False)
        import matplotlib.cm as cm
        import matplotlib.colors as colors
        import matplotlib.pyplot as plt
        import matplotlib.transforms as transforms
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("matplotlib is required for rendering") from exc
    return (plt, transforms, colors, cm)
