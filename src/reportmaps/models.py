"""Run reports and build metadata shared across pipeline modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping


@dataclass(slots=True)
class VisualizationReport:
    """Outcome of one visualization pipeline run."""

    name: str
    title: str = ""
    outputs: list[Path] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    infos: list[str] = field(default_factory=list)
    failed_stage: str | None = None
    summary: dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)

    def add_info(self, msg: str) -> None:
        self.infos.append(msg)

    def output_with_suffix(self, suffix: str) -> Path | None:
        for path in self.outputs:
            if path.suffix.casefold() == suffix.casefold():
                return path
        return None


@dataclass(slots=True)
class BuildReport:
    visualizations: list[VisualizationReport] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors and all(item.ok for item in self.visualizations)

    @property
    def failed(self) -> list[VisualizationReport]:
        return [item for item in self.visualizations if not item.ok]


@dataclass(frozen=True, slots=True)
class BuildManifest:
    """Build metadata used for deterministic audit trails."""

    generated_at_utc: str
    config_hash_sha256: str
    git_commit: str | None
    steps: Mapping[str, str]
    artifacts: Mapping[str, list[str]]

    @classmethod
    def create(
        cls,
        *,
        config_hash_sha256: str,
        git_commit: str | None,
        reports: Iterable[VisualizationReport],
        extra_steps: Mapping[str, str] | None = None,
    ) -> BuildManifest:
        steps: dict[str, str] = {}
        artifacts: dict[str, list[str]] = {}
        for report in reports:
            steps[report.name] = "ok" if report.ok else f"error:{report.failed_stage or 'unknown'}"
            artifacts[report.name] = [str(path) for path in report.outputs]
        steps.update(extra_steps or {})
        return cls(
            generated_at_utc=datetime.now(timezone.utc).isoformat(),
            config_hash_sha256=config_hash_sha256,
            git_commit=git_commit,
            steps=steps,
            artifacts=artifacts,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at_utc": self.generated_at_utc,
            "config_hash_sha256": self.config_hash_sha256,
            "git_commit": self.git_commit,
            "steps": dict(self.steps),
            "artifacts": {key: list(value) for key, value in self.artifacts.items()},
        }
