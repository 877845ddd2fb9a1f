"""Write rendered figures to raster and vector image files."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Sequence

from .errors import ExportError

_LOGGER = logging.getLogger("reportmaps.export")

REPORT_SIZE_IN = (11.0, 8.5)


def export_figure(
    fig: Any,
    output_dir: Path,
    stem: str,
    *,
    formats: Sequence[str] = ("png", "svg"),
    size_in: tuple[float, float] = REPORT_SIZE_IN,
    dpi: int = 150,
) -> tuple[Path, ...]:
    """Save one file per format as `<output_dir>/<stem>.<format>` and close the figure."""
    plt = _require_pyplot()
    written: list[Path] = []
    try:
        fig.set_size_inches(*size_in, forward=False)
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ExportError(f"cannot create output directory: {exc}", source=str(output_dir)) from exc
        for fmt in formats:
            path = output_dir / f"{stem}.{fmt}"
            try:
                fig.savefig(path, format=fmt, dpi=dpi, facecolor="white")
            except (OSError, ValueError) as exc:
                raise ExportError(f"cannot write {fmt}: {exc}", source=str(path)) from exc
            if fmt == "png":
                _check_raster_size(path, size_in, dpi)
            _LOGGER.debug("Wrote %s", path)
            written.append(path)
    finally:
        plt.close(fig)
    return tuple(written)


def _require_pyplot() -> Any:
    try:
        import matplotlib

        matplotlib.use("Agg", force=False)
        import matplotlib.pyplot as plt
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("matplotlib is required for image export") from exc
    return plt


def _check_raster_size(path: Path, size_in: tuple[float, float], dpi: int) -> None:
    try:
        from PIL import Image
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("Pillow is required to verify raster output") from exc

    expected = (round(size_in[0] * dpi), round(size_in[1] * dpi))
    try:
        with Image.open(path) as img:
            actual = img.size
    except OSError as exc:
        raise ExportError(f"written file is not a readable image: {exc}", source=str(path)) from exc
    if actual != expected:
        raise ExportError(
            f"raster is {actual[0]}x{actual[1]} px, expected {expected[0]}x{expected[1]} px",
            source=str(path),
        )
