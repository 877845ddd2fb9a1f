"""CLI entrypoint for the reportmaps figure builder."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Sequence

from .config import AppConfig, load_config
from .document import write_report_index
from .models import BuildManifest, BuildReport
from .pipeline import format_build_lines, run_all
from .util import ensure_directories, file_digest, git_revision, setup_logging, write_json
from .validate import Validator, format_report_lines

LOGGER = logging.getLogger("reportmaps.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reportmaps",
        description="Static charts and thematic maps for a portfolio report.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", default="config.yaml", help="Path to YAML config.")
        p.add_argument("--verbose", action="store_true", help="Enable debug logs.")

    build_p = subparsers.add_parser(
        "build",
        help="Validate, render every visualization, then write the report index and manifest.",
    )
    add_common(build_p)
    build_p.add_argument(
        "--check-data",
        action="store_true",
        help="Load inputs during validation and report labels that would not join.",
    )

    render_p = subparsers.add_parser("render", help="Render selected visualizations only.")
    add_common(render_p)
    render_p.add_argument(
        "--viz",
        action="append",
        default=[],
        help="Visualization name to render. Can be repeated; all when omitted.",
    )

    validate_p = subparsers.add_parser("validate", help="Validate config and input files.")
    add_common(validate_p)
    validate_p.add_argument(
        "--check-data",
        action="store_true",
        help="Load inputs and report labels that would not join.",
    )

    list_p = subparsers.add_parser("list", help="List configured visualizations.")
    add_common(list_p)

    return parser


def _load_and_setup(args: argparse.Namespace) -> AppConfig:
    cfg = load_config(args.config)
    log_path = cfg.paths.logs_dir / "build.log"
    setup_logging(log_path, verbose=args.verbose)
    ensure_directories(cfg.paths.build_directories)
    return cfg


def _log_build(build: BuildReport) -> None:
    for line in format_build_lines(build):
        if line.startswith("[ERROR]"):
            LOGGER.error(line)
        elif line.startswith("[WARN]"):
            LOGGER.warning(line)
        else:
            LOGGER.info(line)


def _write_index(cfg: AppConfig, build: BuildReport) -> Path | None:
    if not cfg.build.write_report:
        return None
    index_path = write_report_index(
        build.visualizations,
        cfg.paths.report_html,
        title=cfg.project.title,
        author=cfg.project.author,
    )
    LOGGER.info("Report index written to %s", index_path)
    return index_path


def _run_validate(cfg: AppConfig, *, check_data: bool) -> int:
    report = Validator(cfg).run(check_data=check_data)
    for line in format_report_lines(report):
        LOGGER.info(line)
    return 0 if report.ok else 1


def _run_build(cfg: AppConfig, *, check_data: bool) -> int:
    LOGGER.info("Starting build pipeline.")

    report = Validator(cfg).run(check_data=check_data)
    for line in format_report_lines(report):
        LOGGER.info(line)
    if not report.ok:
        LOGGER.error("Build aborted due to validation errors.")
        return 1

    build = run_all(cfg)
    _log_build(build)
    index_path = _write_index(cfg, build)

    if cfg.build.write_manifest:
        manifest = BuildManifest.create(
            config_hash_sha256=file_digest(cfg.source_path),
            git_commit=git_revision(cfg.source_path.parent),
            reports=build.visualizations,
            extra_steps={
                "validate": "ok",
                "report_index": "ok" if index_path else "skipped",
            },
        )
        manifest_path = cfg.paths.manifests_dir / "build_manifest.json"
        write_json(manifest_path, manifest.to_dict())
        LOGGER.info("Build manifest written to %s", manifest_path)

    if not build.ok:
        LOGGER.error(
            "Build finished with %d failed visualizations: %s",
            len(build.failed),
            ", ".join(item.name for item in build.failed) or "none",
        )
        return 1
    LOGGER.info("Build finished.")
    return 0


def _run_render(cfg: AppConfig, *, names: Sequence[str]) -> int:
    build = run_all(cfg, names=names or None)
    _log_build(build)
    _write_index(cfg, build)
    return 0 if build.ok else 1


def _run_list(cfg: AppConfig) -> int:
    for viz in cfg.visualizations:
        LOGGER.info("%s (%s): %s", viz.name, viz.kind, viz.title)
    return 0


def _dispatch(args: argparse.Namespace) -> int:
    cfg = _load_and_setup(args)
    command = str(args.command)
    if command == "build":
        return _run_build(cfg, check_data=bool(args.check_data))
    if command == "render":
        names = [str(item) for item in args.viz]
        return _run_render(cfg, names=names)
    if command == "validate":
        return _run_validate(cfg, check_data=bool(args.check_data))
    if command == "list":
        return _run_list(cfg)
    raise ValueError(f"Unknown command: {command}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    return _dispatch(args)


if __name__ == "__main__":
    raise SystemExit(main())
