"""Typed configuration loader for `config.yaml`."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, cast

import yaml


_VISUALIZATION_KINDS = {"map", "chart"}
_CHART_STYLES = {"line", "bar"}
_OVERLAY_KINDS = {"points", "lines"}
_COLUMN_TYPES = {"float", "int", "str"}
_PROVIDERS = {"file", "geoboundaries"}


def _mapping(value: Any, field_name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValueError(f"Expected mapping for '{field_name}'")
    return cast(Mapping[str, Any], value)


def _str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Expected non-empty string for '{field_name}'")
    return value.strip()


def _opt_str(value: Any, field_name: str) -> str | None:
    return None if value is None else _str(value, field_name)


def _int(value: Any, field_name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"Expected integer for '{field_name}'")
    return value


def _float(value: Any, field_name: str) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    raise ValueError(f"Expected float for '{field_name}'")


def _bool(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"Expected bool for '{field_name}'")
    return value


def _str_list(value: Any, field_name: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ValueError(f"Expected list for '{field_name}'")
    out: list[str] = []
    for idx, item in enumerate(value):
        # entity codes such as ISO numerics come through YAML as ints
        if isinstance(item, int) and not isinstance(item, bool):
            item = str(item)
        out.append(_str(item, f"{field_name}[{idx}]"))
    return tuple(out)


def _path_from_cfg(value: Any, field_name: str, root_dir: Path) -> Path:
    raw = _str(value, field_name)
    p = Path(raw)
    return p if p.is_absolute() else root_dir / p


@dataclass(frozen=True, slots=True)
class ProjectConfig:
    title: str
    author: str | None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ProjectConfig:
        return cls(
            title=_str(raw.get("title"), "project.title"),
            author=_opt_str(raw.get("author"), "project.author"),
        )


@dataclass(frozen=True, slots=True)
class PathsConfig:
    data_dir: Path
    key_maps: Path
    output_dir: Path
    report_html: Path
    manifests_dir: Path
    logs_dir: Path
    cache_dir: Path

    @property
    def build_directories(self) -> tuple[Path, ...]:
        return (
            self.output_dir,
            self.report_html.parent,
            self.manifests_dir,
            self.logs_dir,
            self.cache_dir,
        )

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> PathsConfig:
        return cls(
            data_dir=_path_from_cfg(raw.get("data_dir"), "paths.data_dir", root_dir),
            key_maps=_path_from_cfg(raw.get("key_maps"), "paths.key_maps", root_dir),
            output_dir=_path_from_cfg(raw.get("output_dir"), "paths.output_dir", root_dir),
            report_html=_path_from_cfg(raw.get("report_html"), "paths.report_html", root_dir),
            manifests_dir=_path_from_cfg(raw.get("manifests_dir"), "paths.manifests_dir", root_dir),
            logs_dir=_path_from_cfg(raw.get("logs_dir"), "paths.logs_dir", root_dir),
            cache_dir=_path_from_cfg(raw.get("cache_dir"), "paths.cache_dir", root_dir),
        )


@dataclass(frozen=True, slots=True)
class LabelsConfig:
    font_size: float
    padding_px: int
    max_iterations: int
    step_px: float

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> LabelsConfig:
        max_iterations = _int(raw.get("max_iterations"), "render.labels.max_iterations")
        if max_iterations < 0:
            raise ValueError("render.labels.max_iterations must be >= 0")
        step_px = _float(raw.get("step_px"), "render.labels.step_px")
        if step_px <= 0:
            raise ValueError("render.labels.step_px must be > 0")
        return cls(
            font_size=_float(raw.get("font_size"), "render.labels.font_size"),
            padding_px=_int(raw.get("padding_px"), "render.labels.padding_px"),
            max_iterations=max_iterations,
            step_px=step_px,
        )


@dataclass(frozen=True, slots=True)
class RenderConfig:
    size_in: tuple[float, float]
    dpi: int
    formats: tuple[str, ...]
    font_family: str
    missing_color: str
    edge_color: str
    edge_width: float
    labels: LabelsConfig

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> RenderConfig:
        size_raw = raw.get("size_in")
        if not isinstance(size_raw, list) or len(size_raw) != 2:
            raise ValueError("Expected [width, height] list for 'render.size_in'")
        width = _float(size_raw[0], "render.size_in[0]")
        height = _float(size_raw[1], "render.size_in[1]")
        if width <= 0 or height <= 0:
            raise ValueError("render.size_in values must be > 0")
        formats = tuple(item.casefold() for item in _str_list(raw.get("formats"), "render.formats"))
        if not formats:
            raise ValueError("render.formats must list at least one image format")
        return cls(
            size_in=(width, height),
            dpi=_int(raw.get("dpi"), "render.dpi"),
            formats=formats,
            font_family=_str(raw.get("font_family"), "render.font_family"),
            missing_color=_str(raw.get("missing_color"), "render.missing_color"),
            edge_color=_str(raw.get("edge_color"), "render.edge_color"),
            edge_width=_float(raw.get("edge_width"), "render.edge_width"),
            labels=LabelsConfig.from_mapping(_mapping(raw.get("labels"), "render.labels")),
        )


@dataclass(frozen=True, slots=True)
class GeometryConfig:
    provider: str
    base_url: str
    fixtures_dir: Path | None
    request_timeout_s: float
    max_retries: int
    retry_backoff_s: float
    user_agent: str
    country_codes: Mapping[str, str]

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> GeometryConfig:
        provider = _str(raw.get("provider"), "geometry.provider").casefold()
        if provider not in _PROVIDERS:
            raise ValueError("geometry.provider must be one of: " + ", ".join(sorted(_PROVIDERS)))
        fixtures_raw = raw.get("fixtures_dir")
        fixtures_dir = (
            _path_from_cfg(fixtures_raw, "geometry.fixtures_dir", root_dir)
            if fixtures_raw is not None
            else None
        )
        if provider == "file" and fixtures_dir is None:
            raise ValueError("geometry.fixtures_dir is required when geometry.provider is 'file'")

        request_timeout_s = _float(raw.get("request_timeout_s", 30.0), "geometry.request_timeout_s")
        max_retries = _int(raw.get("max_retries", 3), "geometry.max_retries")
        retry_backoff_s = _float(raw.get("retry_backoff_s", 1.0), "geometry.retry_backoff_s")
        if request_timeout_s <= 0:
            raise ValueError("geometry.request_timeout_s must be > 0")
        if max_retries < 0:
            raise ValueError("geometry.max_retries must be >= 0")
        if retry_backoff_s <= 0:
            raise ValueError("geometry.retry_backoff_s must be > 0")

        codes_raw = raw.get("country_codes", {}) or {}
        codes = {
            _str(name, "geometry.country_codes key"): _str(code, "geometry.country_codes value").upper()
            for name, code in _mapping(codes_raw, "geometry.country_codes").items()
        }
        return cls(
            provider=provider,
            base_url=_str(raw.get("base_url"), "geometry.base_url").rstrip("/"),
            fixtures_dir=fixtures_dir,
            request_timeout_s=request_timeout_s,
            max_retries=max_retries,
            retry_backoff_s=retry_backoff_s,
            user_agent=_str(raw.get("user_agent"), "geometry.user_agent"),
            country_codes=codes,
        )


@dataclass(frozen=True, slots=True)
class TableSource:
    path: Path
    sheet: str | None = None
    delimiter: str = ","
    skip_rows: int = 0
    dtypes: Mapping[str, str] | None = None
    sentinels: tuple[str, ...] = ()

    @property
    def is_spreadsheet(self) -> bool:
        return self.path.suffix.casefold() in {".xlsx", ".xlsm", ".xls"}

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path, prefix: str) -> TableSource:
        dtypes_raw = raw.get("dtypes")
        dtypes: dict[str, str] | None = None
        if dtypes_raw is not None:
            dtypes = {}
            for column, kind in _mapping(dtypes_raw, f"{prefix}.dtypes").items():
                kind_s = _str(kind, f"{prefix}.dtypes.{column}").casefold()
                if kind_s not in _COLUMN_TYPES:
                    raise ValueError(
                        f"{prefix}.dtypes.{column} must be one of: " + ", ".join(sorted(_COLUMN_TYPES))
                    )
                dtypes[str(column)] = kind_s
        sentinels_raw = raw.get("sentinels")
        skip_rows = _int(raw.get("skip_rows", 0), f"{prefix}.skip_rows")
        if skip_rows < 0:
            raise ValueError(f"{prefix}.skip_rows must be >= 0")
        return cls(
            path=_path_from_cfg(raw.get("path"), f"{prefix}.path", root_dir),
            sheet=_opt_str(raw.get("sheet"), f"{prefix}.sheet"),
            delimiter=str(raw.get("delimiter", ",")),
            skip_rows=skip_rows,
            dtypes=dtypes,
            sentinels=_str_list(sentinels_raw, f"{prefix}.sentinels") if sentinels_raw is not None else (),
        )


@dataclass(frozen=True, slots=True)
class ReshapeConfig:
    first: str
    last: str
    var_name: str
    value_name: str

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], prefix: str) -> ReshapeConfig:
        return cls(
            first=_str(raw.get("first"), f"{prefix}.first"),
            last=_str(raw.get("last"), f"{prefix}.last"),
            var_name=_str(raw.get("var_name", "period"), f"{prefix}.var_name"),
            value_name=_str(raw.get("value_name", "value"), f"{prefix}.value_name"),
        )


@dataclass(frozen=True, slots=True)
class YearRange:
    start: int
    end: int
    prefix: str

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], prefix: str) -> YearRange:
        start = _int(raw.get("start"), f"{prefix}.start")
        end = _int(raw.get("end"), f"{prefix}.end")
        if end < start:
            raise ValueError(f"{prefix}.end must be >= {prefix}.start")
        return cls(start=start, end=end, prefix=str(raw.get("prefix", "")))


@dataclass(frozen=True, slots=True)
class BoundarySource:
    """Either a local geometry file or a (country, level) boundary request."""

    key_column: str
    path: Path | None = None
    country: str | None = None
    level: str | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path, prefix: str) -> BoundarySource:
        path_raw = raw.get("path")
        country = _opt_str(raw.get("country"), f"{prefix}.country")
        level = _opt_str(raw.get("level"), f"{prefix}.level")
        if path_raw is None and (country is None or level is None):
            raise ValueError(f"{prefix} needs either 'path' or both 'country' and 'level'")
        if path_raw is not None and country is not None:
            raise ValueError(f"Use only one of 'path' or 'country' in {prefix}")
        return cls(
            key_column=_str(raw.get("key_column"), f"{prefix}.key_column"),
            path=_path_from_cfg(path_raw, f"{prefix}.path", root_dir) if path_raw is not None else None,
            country=country,
            level=level.upper() if level is not None else None,
        )


@dataclass(frozen=True, slots=True)
class OverlayConfig:
    kind: str
    path: Path
    color: str
    width: float
    marker_size: float
    lon_column: str
    lat_column: str
    label_column: str | None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path, prefix: str) -> OverlayConfig:
        kind = _str(raw.get("kind"), f"{prefix}.kind").casefold()
        if kind not in _OVERLAY_KINDS:
            raise ValueError(f"{prefix}.kind must be one of: " + ", ".join(sorted(_OVERLAY_KINDS)))
        return cls(
            kind=kind,
            path=_path_from_cfg(raw.get("path"), f"{prefix}.path", root_dir),
            color=_str(raw.get("color", "#222222"), f"{prefix}.color"),
            width=_float(raw.get("width", 1.0), f"{prefix}.width"),
            marker_size=_float(raw.get("marker_size", 18.0), f"{prefix}.marker_size"),
            lon_column=_str(raw.get("lon_column", "lon"), f"{prefix}.lon_column"),
            lat_column=_str(raw.get("lat_column", "lat"), f"{prefix}.lat_column"),
            label_column=_opt_str(raw.get("label_column"), f"{prefix}.label_column"),
        )


@dataclass(frozen=True, slots=True)
class VisualizationConfig:
    name: str
    kind: str
    title: str
    caption: str | None
    table: TableSource
    key_column: str
    reshape: ReshapeConfig | None = None
    key_map: str | None = None
    entities: tuple[str, ...] = ()
    years: YearRange | None = None
    # map only
    boundaries: BoundarySource | None = None
    period: str | None = None
    metric_column: str | None = None
    metric_out_column: str = "share_pct"
    low_color: str = "#fee8c8"
    high_color: str = "#b30000"
    label_regions: bool = False
    overlays: tuple[OverlayConfig, ...] = ()
    # chart only
    chart: str = "line"
    palette: tuple[str, ...] = ()
    y_label: str | None = None

    @property
    def output_stem(self) -> str:
        return self.name

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path, idx: int) -> VisualizationConfig:
        prefix = f"visualizations[{idx}]"
        name = _str(raw.get("name"), f"{prefix}.name")
        if not all(ch.isalnum() or ch in "_-" for ch in name):
            raise ValueError(f"{prefix}.name may only contain letters, digits, '_' and '-'")
        kind = _str(raw.get("kind"), f"{prefix}.kind").casefold()
        if kind not in _VISUALIZATION_KINDS:
            raise ValueError(f"{prefix}.kind must be one of: " + ", ".join(sorted(_VISUALIZATION_KINDS)))

        reshape_raw = raw.get("reshape")
        years_raw = raw.get("years")
        entities_raw = raw.get("entities")
        common: dict[str, Any] = {
            "name": name,
            "kind": kind,
            "title": _str(raw.get("title"), f"{prefix}.title"),
            "caption": _opt_str(raw.get("caption"), f"{prefix}.caption"),
            "table": TableSource.from_mapping(_mapping(raw.get("table"), f"{prefix}.table"), root_dir, f"{prefix}.table"),
            "key_column": _str(raw.get("key_column"), f"{prefix}.key_column"),
            "reshape": (
                ReshapeConfig.from_mapping(_mapping(reshape_raw, f"{prefix}.reshape"), f"{prefix}.reshape")
                if reshape_raw is not None
                else None
            ),
            "key_map": _opt_str(raw.get("key_map"), f"{prefix}.key_map"),
            "entities": _str_list(entities_raw, f"{prefix}.entities") if entities_raw is not None else (),
            "years": (
                YearRange.from_mapping(_mapping(years_raw, f"{prefix}.years"), f"{prefix}.years")
                if years_raw is not None
                else None
            ),
        }

        if kind == "map":
            colors = _mapping(raw.get("colors", {}) or {}, f"{prefix}.colors")
            metric = _mapping(raw.get("metric"), f"{prefix}.metric")
            overlays_raw = raw.get("overlays", []) or []
            if not isinstance(overlays_raw, list):
                raise ValueError(f"Expected list for '{prefix}.overlays'")
            return cls(
                **common,
                boundaries=BoundarySource.from_mapping(
                    _mapping(raw.get("boundaries"), f"{prefix}.boundaries"), root_dir, f"{prefix}.boundaries"
                ),
                period=_opt_str(raw.get("period"), f"{prefix}.period"),
                metric_column=_str(metric.get("column"), f"{prefix}.metric.column"),
                metric_out_column=_str(metric.get("out_column", "share_pct"), f"{prefix}.metric.out_column"),
                low_color=_str(colors.get("low", "#fee8c8"), f"{prefix}.colors.low"),
                high_color=_str(colors.get("high", "#b30000"), f"{prefix}.colors.high"),
                label_regions=_bool(raw.get("label_regions", False), f"{prefix}.label_regions"),
                overlays=tuple(
                    OverlayConfig.from_mapping(
                        _mapping(item, f"{prefix}.overlays[{o_idx}]"), root_dir, f"{prefix}.overlays[{o_idx}]"
                    )
                    for o_idx, item in enumerate(overlays_raw)
                ),
            )

        chart = _str(raw.get("chart", "line"), f"{prefix}.chart").casefold()
        if chart not in _CHART_STYLES:
            raise ValueError(f"{prefix}.chart must be one of: " + ", ".join(sorted(_CHART_STYLES)))
        if common["reshape"] is None:
            raise ValueError(f"{prefix}.reshape is required for chart visualizations")
        palette_raw = raw.get("palette")
        return cls(
            **common,
            chart=chart,
            palette=_str_list(palette_raw, f"{prefix}.palette") if palette_raw is not None else (),
            y_label=_opt_str(raw.get("y_label"), f"{prefix}.y_label"),
        )


@dataclass(frozen=True, slots=True)
class BuildConfig:
    write_manifest: bool
    write_report: bool

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> BuildConfig:
        return cls(
            write_manifest=_bool(raw.get("write_manifest"), "build.write_manifest"),
            write_report=_bool(raw.get("write_report"), "build.write_report"),
        )


@dataclass(frozen=True, slots=True)
class AppConfig:
    source_path: Path
    project: ProjectConfig
    paths: PathsConfig
    render: RenderConfig
    geometry: GeometryConfig
    build: BuildConfig
    visualizations: tuple[VisualizationConfig, ...]

    def visualization(self, name: str) -> VisualizationConfig:
        for viz in self.visualizations:
            if viz.name == name:
                return viz
        raise KeyError(name)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], source_path: Path) -> AppConfig:
        root_dir = source_path.parent.resolve()
        viz_raw = raw.get("visualizations")
        if not isinstance(viz_raw, list):
            raise ValueError("Expected list for 'visualizations'")
        visualizations = tuple(
            VisualizationConfig.from_mapping(_mapping(item, f"visualizations[{idx}]"), root_dir, idx)
            for idx, item in enumerate(viz_raw)
        )
        seen: set[str] = set()
        for viz in visualizations:
            if viz.name in seen:
                raise ValueError(f"Duplicate visualization name '{viz.name}'")
            seen.add(viz.name)
        return cls(
            source_path=source_path.resolve(),
            project=ProjectConfig.from_mapping(_mapping(raw.get("project"), "project")),
            paths=PathsConfig.from_mapping(_mapping(raw.get("paths"), "paths"), root_dir),
            render=RenderConfig.from_mapping(_mapping(raw.get("render"), "render")),
            geometry=GeometryConfig.from_mapping(_mapping(raw.get("geometry"), "geometry"), root_dir),
            build=BuildConfig.from_mapping(_mapping(raw.get("build"), "build")),
            visualizations=visualizations,
        )


def load_config(path: str | Path) -> AppConfig:
    """Load and validate the YAML config file into typed settings."""
    cfg_path = Path(path).resolve()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")
    with cfg_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)
    if not isinstance(raw, Mapping):
        raise ValueError("Top-level config must be a YAML mapping")
    return AppConfig.from_mapping(cast(Mapping[str, Any], raw), cfg_path)
