"""Pipeline error taxonomy.

Every stage raises a subclass of `PipelineError` tagged with the stage name and
the input that caused it, so a failed visualization can report exactly where it
stopped without aborting the others.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base error for one visualization pipeline stage."""

    stage = "unknown"

    def __init__(self, message: str, *, source: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.source = source

    def describe(self) -> str:
        where = f" for {self.source}" if self.source else ""
        return f"{self.stage} failed{where}: {self.message}"


class LoadError(PipelineError):
    """Missing file, unreadable format or failed type coercion."""

    stage = "load"


class ReshapeError(PipelineError):
    stage = "reshape"


class JoinError(PipelineError):
    stage = "join"


class DegenerateAggregateError(PipelineError):
    """Zero or all-null denominator when computing a derived metric."""

    stage = "metric"


class GeometryFetchError(PipelineError):
    stage = "geometry"


class RenderError(PipelineError):
    stage = "render"


class ExportError(PipelineError):
    stage = "export"
