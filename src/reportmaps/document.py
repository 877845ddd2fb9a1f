"""HTML report index embedding the exported figures."""

from __future__ import annotations

import os
from html import escape
from pathlib import Path
from typing import Sequence

from .models import VisualizationReport


def _relative_src(target: Path, output_html: Path) -> str:
    return Path(os.path.relpath(target.resolve(), output_html.parent.resolve())).as_posix()


def write_report_index(
    reports: Sequence[VisualizationReport],
    output_html: Path,
    *,
    title: str,
    author: str | None = None,
    max_columns: int = 2,
) -> Path:
    """Generate an HTML page with every exported raster and a link to its vector twin.

    Visualizations are listed in run order. A failed visualization gets a card
    naming the stage that failed instead of an image.
    """
    cards: list[str] = []
    for report in reports:
        raster = report.output_with_suffix(".png")
        vector = report.output_with_suffix(".svg")
        heading = escape(report.title or report.name)

        if report.ok and raster is not None and raster.exists():
            status = "ok"
            status_label = "OK"
            body = [
                f"  <img src='{escape(_relative_src(raster, output_html))}' alt='{heading}'>",
            ]
            if vector is not None and vector.exists():
                body.append(
                    f"  <p class='links'><a href='{escape(_relative_src(vector, output_html))}'>"
                    "vector (svg)</a></p>"
                )
        elif report.ok:
            status = "missing"
            status_label = "NO_RASTER"
            body = ["  <div class='placeholder'>No raster output was exported</div>"]
        else:
            status = "failed"
            status_label = f"FAILED: {escape(report.failed_stage or 'unknown')}"
            body = [
                "  <div class='placeholder'>",
                *(f"    <p>{escape(msg)}</p>" for msg in report.errors),
                "  </div>",
            ]
        warnings = [f"  <p class='warning'>{escape(msg)}</p>" for msg in report.warnings]

        cards.append(
            "\n".join(
                [
                    f"<div class='card' id='{escape(report.name)}'>",
                    f"  <h3>{heading}</h3>",
                    f"  <p class='status {status}'>{status_label}</p>",
                    *body,
                    *warnings,
                    "</div>",
                ]
            )
        )

    byline = f"  <p class='byline'>{escape(author)}</p>" if author else ""
    html = "\n".join(
        [
            "<!doctype html>",
            "<html lang='en'>",
            "<head>",
            "  <meta charset='utf-8'>",
            "  <meta name='viewport' content='width=device-width, initial-scale=1'>",
            f"  <title>{escape(title)}</title>",
            "  <style>",
            "    body { font-family: Arial, sans-serif; margin: 16px; }",
            "    .grid { "
            f"display: grid; grid-template-columns: repeat({max_columns}, minmax(320px, 1fr)); "
            "gap: 16px; }",
            "    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }",
            "    .card h3 { margin: 0 0 8px 0; font-size: 16px; }",
            "    .status { margin: 0 0 8px 0; font-weight: 700; }",
            "    .status.ok { color: #197a2f; }",
            "    .status.missing { color: #99610f; }",
            "    .status.failed { color: #b22d2d; }",
            "    .warning { margin: 0 0 4px 0; font-size: 13px; color: #99610f; }",
            "    .links { margin: 0 0 4px 0; font-size: 13px; }",
            "    .byline { color: #555; }",
            "    img { display: block; max-width: 100%; margin-bottom: 8px; }",
            "    .placeholder {",
            "      border: 1px dashed #bbb;",
            "      color: #666;",
            "      border-radius: 6px;",
            "      padding: 12px;",
            "      margin-bottom: 8px;",
            "      background: #fafafa;",
            "      font-size: 13px;",
            "    }",
            "  </style>",
            "</head>",
            "<body>",
            f"  <h1>{escape(title)}</h1>",
            byline,
            "  <div class='grid'>",
            *cards,
            "  </div>",
            "</body>",
            "</html>",
            "",
        ]
    )
    output_html.parent.mkdir(parents=True, exist_ok=True)
    output_html.write_text(html, encoding="utf-8")
    return output_html
