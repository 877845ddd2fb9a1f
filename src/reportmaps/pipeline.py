"""Per-visualization pipelines and the batch runner.

Each visualization is a straight-line function from its input files to its
exported image paths. Failures are recorded per visualization with the stage
and input that caused them; the batch always moves on to the next one.
"""

from __future__ import annotations

import logging
import time
from typing import Mapping, Sequence

import geopandas as gpd
import pandas as pd

from .config import AppConfig, VisualizationConfig
from .errors import JoinError, LoadError, PipelineError
from .export import export_figure
from .geometry import GeometryProvider, build_provider
from .join import join_attributes, select_period
from .keys import IDENTITY, KeyMap, load_key_maps, normalize_keys, unmatched_keys
from .loader import clean_geometry, load_geometry, load_overlay, load_table
from .metrics import share_of_total
from .models import BuildReport, VisualizationReport
from .render import ChartRenderer, ChartRequest, MapRenderer, MapRequest, OverlayLayer, RenderedFigure
from .reshape import drop_absent, filter_entities, filter_periods, melt_wide
from .util import format_name_list

_LOGGER = logging.getLogger("reportmaps.pipeline")


class _StageTracker:
    def __init__(self) -> None:
        self.current = "setup"

    def enter(self, stage: str) -> None:
        self.current = stage
        _LOGGER.debug("stage: %s", stage)


def prepare_long_table(
    viz: VisualizationConfig,
    key_map: KeyMap,
    stages: _StageTracker | None = None,
) -> pd.DataFrame:
    """Load, reshape, filter and normalize the attribute table of one visualization."""
    stages = stages or _StageTracker()
    stages.enter("load")
    raw = load_table(viz.table)
    if viz.key_column not in raw.columns:
        raise LoadError(f"key column '{viz.key_column}' not found", source=str(viz.table.path))

    stages.enter("reshape")
    reshape = viz.reshape
    long = melt_wide(
        raw,
        first=reshape.first if reshape else None,
        last=reshape.last if reshape else None,
        var_name=reshape.var_name if reshape else "period",
        value_name=reshape.value_name if reshape else "value",
    )
    if reshape is None and viz.metric_column is not None:
        long = drop_absent(long, viz.metric_column)
    long = filter_entities(long, viz.key_column, viz.entities)
    if viz.years is not None and reshape is not None:
        long = filter_periods(
            long,
            reshape.var_name,
            start=viz.years.start,
            end=viz.years.end,
            prefix=viz.years.prefix,
        )

    stages.enter("normalize")
    return normalize_keys(long, viz.key_column, key_map)


def resolve_key_map(viz: VisualizationConfig, key_maps: Mapping[str, KeyMap]) -> KeyMap:
    if viz.key_map is None:
        return IDENTITY
    key_map = key_maps.get(viz.key_map)
    if key_map is None:
        raise LoadError(f"unknown key map '{viz.key_map}'", source=viz.name)
    return key_map


def load_boundaries(viz: VisualizationConfig, provider: GeometryProvider) -> gpd.GeoDataFrame:
    boundaries = viz.boundaries
    if boundaries is None:
        raise LoadError("map visualization has no boundaries", source=viz.name)
    if boundaries.path is not None:
        return load_geometry(boundaries.path, key_column=boundaries.key_column)
    if boundaries.country is None or boundaries.level is None:
        raise LoadError("boundaries need a path or a country and level", source=viz.name)
    frame = provider.boundaries(boundaries.country, boundaries.level)
    return clean_geometry(
        frame,
        key_column=boundaries.key_column,
        source=f"{boundaries.country}/{boundaries.level}",
    )


def build_map_figure(
    viz: VisualizationConfig,
    cfg: AppConfig,
    *,
    provider: GeometryProvider,
    key_map: KeyMap,
    report: VisualizationReport,
    stages: _StageTracker,
) -> RenderedFigure:
    if viz.boundaries is None or viz.metric_column is None:
        raise LoadError("map visualization needs boundaries and a metric column", source=viz.name)
    long = prepare_long_table(viz, key_map, stages)
    report.summary["attribute_rows"] = len(long)

    stages.enter("geometry")
    geometries = load_boundaries(viz, provider)
    report.summary["geometry_records"] = len(geometries)
    geometry_key = viz.boundaries.key_column

    stages.enter("join")
    period_column = viz.reshape.var_name if viz.reshape else "period"
    attributes = select_period(long, period_column=period_column, period=viz.period)
    unmatched = unmatched_keys(attributes, viz.key_column, geometries[geometry_key].astype(str))
    if unmatched:
        report.add_warning(
            f"{len(unmatched)} labels have no geometry and will not be drawn: "
            + format_name_list(unmatched)
        )
    joined = join_attributes(
        geometries,
        attributes,
        geometry_key=geometry_key,
        attribute_key=viz.key_column,
    )
    metric_source = viz.metric_column
    if metric_source not in joined.columns and f"{metric_source}_attr" in joined.columns:
        metric_source = f"{metric_source}_attr"
    if metric_source not in joined.columns:
        raise JoinError(
            f"metric column '{viz.metric_column}' not present after join "
            f"(attribute columns: {format_name_list([str(col) for col in attributes.columns])})",
            source=viz.name,
        )
    report.summary["geometries_without_data"] = int(joined[metric_source].isna().sum())

    stages.enter("metric")
    joined = share_of_total(joined, metric_source, out_column=viz.metric_out_column)

    stages.enter("overlays")
    overlays = tuple(
        OverlayLayer(
            kind=overlay.kind,
            frame=load_overlay(overlay),
            color=overlay.color,
            width=overlay.width,
            marker_size=overlay.marker_size,
            label_column=overlay.label_column,
        )
        for overlay in viz.overlays
    )

    stages.enter("render")
    rendered = MapRenderer(cfg.render).render(
        MapRequest(
            title=viz.title,
            base=joined,
            metric_column=viz.metric_out_column,
            low_color=viz.low_color,
            high_color=viz.high_color,
            overlays=overlays,
            region_label_column=geometry_key if viz.label_regions else None,
            caption=viz.caption,
        )
    )
    if not rendered.label_stats.converged:
        report.add_warning(
            "Label layout did not fully converge "
            f"({rendered.label_stats.iterations} iterations); best layout kept."
        )
    return rendered


def build_chart_figure(
    viz: VisualizationConfig,
    cfg: AppConfig,
    *,
    key_map: KeyMap,
    report: VisualizationReport,
    stages: _StageTracker,
) -> RenderedFigure:
    if viz.reshape is None:
        raise LoadError("chart visualization needs a reshape block", source=viz.name)
    long = prepare_long_table(viz, key_map, stages)
    report.summary["attribute_rows"] = len(long)

    stages.enter("render")
    return ChartRenderer(cfg.render).render(
        ChartRequest(
            title=viz.title,
            frame=long,
            entity_column=viz.key_column,
            period_column=viz.reshape.var_name,
            value_column=viz.reshape.value_name,
            style=viz.chart,
            palette=viz.palette,
            y_label=viz.y_label,
            caption=viz.caption,
            period_prefix=viz.years.prefix if viz.years else "",
        )
    )


def run_visualization(
    viz: VisualizationConfig,
    cfg: AppConfig,
    *,
    provider: GeometryProvider,
    key_maps: Mapping[str, KeyMap],
) -> VisualizationReport:
    """Run one visualization end to end; never raises for pipeline failures."""
    report = VisualizationReport(name=viz.name, title=viz.title)
    stages = _StageTracker()
    t0 = time.perf_counter()
    try:
        key_map = resolve_key_map(viz, key_maps)
        if viz.kind == "map":
            rendered = build_map_figure(
                viz,
                cfg,
                provider=provider,
                key_map=key_map,
                report=report,
                stages=stages,
            )
        else:
            rendered = build_chart_figure(viz, cfg, key_map=key_map, report=report, stages=stages)

        stages.enter("export")
        outputs = export_figure(
            rendered.figure,
            cfg.paths.output_dir,
            viz.output_stem,
            formats=cfg.render.formats,
            size_in=cfg.render.size_in,
            dpi=cfg.render.dpi,
        )
    except PipelineError as exc:
        report.failed_stage = exc.stage
        report.add_error(exc.describe())
        _LOGGER.error("[%s] %s", viz.name, exc.describe())
        return report
    except Exception as exc:
        report.failed_stage = stages.current
        report.add_error(f"{stages.current} failed: {exc}")
        _LOGGER.exception("[%s] unexpected failure in stage %s", viz.name, stages.current)
        return report

    report.outputs.extend(outputs)
    report.add_info(
        f"Wrote {', '.join(path.name for path in outputs)} in {time.perf_counter() - t0:.2f}s"
    )
    return report


def run_all(
    cfg: AppConfig,
    *,
    names: Sequence[str] | None = None,
    provider: GeometryProvider | None = None,
    key_maps: Mapping[str, KeyMap] | None = None,
) -> BuildReport:
    """Run the selected visualizations in order, isolating their failures."""
    build = BuildReport()
    selected = list(cfg.visualizations)
    if names:
        requested = {name.strip() for name in names if name and name.strip()}
        unknown = sorted(requested - {viz.name for viz in selected})
        if unknown:
            build.errors.append("Unknown visualization names: " + format_name_list(unknown))
        selected = [viz for viz in selected if viz.name in requested]

    if key_maps is None:
        try:
            key_maps = load_key_maps(cfg.paths.key_maps)
        except (OSError, ValueError) as exc:
            build.errors.append(f"Failed loading key maps '{cfg.paths.key_maps}': {exc}")
            key_maps = {}
    if provider is None:
        provider = build_provider(cfg.geometry, cache_dir=cfg.paths.cache_dir)

    for idx, viz in enumerate(selected, start=1):
        _LOGGER.info("[build] (%d/%d) %s", idx, len(selected), viz.name)
        build.visualizations.append(run_visualization(viz, cfg, provider=provider, key_maps=key_maps))
    return build


def format_build_lines(build: BuildReport) -> Sequence[str]:
    lines: list[str] = []
    for report in build.visualizations:
        lines.extend(f"[INFO] {report.name}: {msg}" for msg in report.infos)
        lines.extend(f"[WARN] {report.name}: {msg}" for msg in report.warnings)
        lines.extend(f"[ERROR] {report.name}: {msg}" for msg in report.errors)
    lines.extend(f"[ERROR] {msg}" for msg in build.errors)
    done = sum(1 for report in build.visualizations if report.ok)
    lines.append(f"[INFO] Build summary: {done}/{len(build.visualizations)} visualizations exported")
    if build.ok:
        lines.append("[OK] All visualizations exported with no errors.")
    return lines
