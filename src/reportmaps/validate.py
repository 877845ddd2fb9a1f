"""Validation layer for config and input datasets."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from .config import AppConfig, VisualizationConfig
from .errors import PipelineError
from .geometry import FileGeometryProvider, boundary_filename, resolve_country_code
from .keys import IDENTITY, KeyMap, load_key_maps, unmatched_keys
from .pipeline import load_boundaries, prepare_long_table
from .util import format_name_list


@dataclass(slots=True)
class ValidationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    infos: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)

    def add_info(self, msg: str) -> None:
        self.infos.append(msg)


class Validator:
    """Top-level input and schema validator."""

    def __init__(self, cfg: AppConfig) -> None:
        self.cfg = cfg

    def run(self, *, check_data: bool = False) -> ValidationReport:
        report = ValidationReport()
        report.add_info(f"Loaded {len(self.cfg.visualizations)} visualization definitions")
        key_maps = self._validate_key_maps(report)
        for viz in self.cfg.visualizations:
            self._validate_inputs(report, viz)
            self._validate_key_map_reference(report, viz, key_maps)
        if check_data:
            for viz in self.cfg.visualizations:
                self._validate_join_coverage(report, viz, key_maps)
        return report

    def _validate_key_maps(self, report: ValidationReport) -> dict[str, KeyMap]:
        path = self.cfg.paths.key_maps
        try:
            key_maps = load_key_maps(path)
        except FileNotFoundError:
            report.add_error(f"Missing key map file: {path}")
            return {}
        except (OSError, ValueError) as exc:
            report.add_error(f"Failed parsing key map file '{path}': {exc}")
            return {}
        report.add_info(
            f"Loaded {len(key_maps)} key maps ({sum(len(m) for m in key_maps.values())} entries) from {path}"
        )
        return key_maps

    def _validate_inputs(self, report: ValidationReport, viz: VisualizationConfig) -> None:
        self._check_exists(report, viz.table.path, label=f"{viz.name}: table")
        for overlay in viz.overlays:
            self._check_exists(report, overlay.path, label=f"{viz.name}: overlay")

        boundaries = viz.boundaries
        if boundaries is None:
            return
        if boundaries.path is not None:
            self._check_exists(report, boundaries.path, label=f"{viz.name}: boundaries")
            return

        if boundaries.country is None or boundaries.level is None:
            report.add_error(f"{viz.name}: boundaries need a path or a country and level")
            return
        try:
            iso3 = resolve_country_code(boundaries.country, self.cfg.geometry.country_codes)
        except PipelineError as exc:
            report.add_error(f"{viz.name}: {exc.describe()}")
            return
        if self.cfg.geometry.provider == "file":
            if self.cfg.geometry.fixtures_dir is None:
                report.add_error("geometry.fixtures_dir is required for the file provider")
                return
            fixture = self.cfg.geometry.fixtures_dir / boundary_filename(iso3, boundaries.level)
            self._check_exists(report, fixture, label=f"{viz.name}: boundaries")
        else:
            cached = self.cfg.paths.cache_dir / boundary_filename(iso3, boundaries.level)
            if not cached.exists():
                report.add_info(
                    f"{viz.name}: boundaries {iso3}/{boundaries.level} not cached; will be fetched at build time"
                )

    def _validate_key_map_reference(
        self,
        report: ValidationReport,
        viz: VisualizationConfig,
        key_maps: dict[str, KeyMap],
    ) -> None:
        if viz.key_map is not None and viz.key_map not in key_maps:
            known = format_name_list(sorted(key_maps)) or "none"
            report.add_error(f"{viz.name}: unknown key map '{viz.key_map}' (known: {known})")

    def _validate_join_coverage(
        self,
        report: ValidationReport,
        viz: VisualizationConfig,
        key_maps: dict[str, KeyMap],
    ) -> None:
        """Load inputs offline and report labels that would not join."""
        if viz.boundaries is None:
            return
        if viz.boundaries.path is None and self.cfg.geometry.provider != "file":
            report.add_info(f"{viz.name}: skipping join coverage check for remote boundaries")
            return

        key_map = key_maps.get(viz.key_map, IDENTITY) if viz.key_map else IDENTITY
        provider = FileGeometryProvider(
            self.cfg.geometry.fixtures_dir or Path("."),
            country_codes=self.cfg.geometry.country_codes,
        )
        try:
            long = prepare_long_table(viz, key_map)
            geometries = load_boundaries(viz, provider)
        except PipelineError as exc:
            report.add_error(f"{viz.name}: {exc.describe()}")
            return

        unmatched = unmatched_keys(long, viz.key_column, geometries[viz.boundaries.key_column])
        if unmatched:
            report.add_warning(
                f"{viz.name}: labels without a geometry match: {format_name_list(unmatched)}"
            )
        report.add_info(
            f"{viz.name}: join coverage summary: attribute_rows={len(long)}, "
            f"geometry_records={len(geometries)}, unmatched_labels={len(unmatched)}"
        )

    @staticmethod
    def _check_exists(report: ValidationReport, path: Path, *, label: str) -> None:
        if not path.exists():
            report.add_error(f"Missing {label} file: {path}")


def format_report_lines(report: ValidationReport) -> Iterable[str]:
    for info in report.infos:
        yield f"[INFO] {info}"
    for warning in report.warnings:
        yield f"[WARN] {warning}"
    for error in report.errors:
        yield f"[ERROR] {error}"
    if report.ok:
        yield "[OK] Validation completed with no errors."
