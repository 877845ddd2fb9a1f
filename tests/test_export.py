from __future__ import annotations

from pathlib import Path

import matplotlib.pyplot as plt
import pytest
from PIL import Image

from reportmaps.errors import ExportError
from reportmaps.export import REPORT_SIZE_IN, export_figure


def _figure():
    fig, ax = plt.subplots(figsize=(4, 3))
    ax.plot([0, 1, 2], [2, 1, 3])
    return fig


def test_writes_raster_and_vector_at_report_aspect(tmp_path: Path) -> None:
    fig = _figure()

    written = export_figure(fig, tmp_path / "figures", "ridership", dpi=100)

    assert [path.name for path in written] == ["ridership.png", "ridership.svg"]
    with Image.open(written[0]) as img:
        width, height = img.size
    assert (width, height) == (1100, 850)
    assert width / height == pytest.approx(REPORT_SIZE_IN[0] / REPORT_SIZE_IN[1])
    assert "<svg" in written[1].read_text(encoding="utf-8")
    assert not plt.fignum_exists(fig.number)


def test_unwritable_target_raises_export_error(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    fig = _figure()

    with pytest.raises(ExportError) as excinfo:
        export_figure(fig, blocker / "figures", "ridership")

    assert excinfo.value.stage == "export"
    assert not plt.fignum_exists(fig.number)


def test_unknown_format_raises_export_error(tmp_path: Path) -> None:
    with pytest.raises(ExportError, match="cannot write"):
        export_figure(_figure(), tmp_path, "ridership", formats=("png", "nope"))
