"""Repelling label layout on pixel-space bounding boxes."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

PixelBBox = tuple[float, float, float, float]

_GOLDEN_ANGLE = math.pi * (3.0 - math.sqrt(5.0))


@dataclass(frozen=True, slots=True)
class RepelResult:
    boxes: tuple[PixelBBox, ...]
    iterations: int
    converged: bool
    overlap: float


def intersection_area(left: PixelBBox, right: PixelBBox) -> float:
    x0 = max(left[0], right[0])
    y0 = max(left[1], right[1])
    x1 = min(left[2], right[2])
    y1 = min(left[3], right[3])
    if x1 <= x0 or y1 <= y0:
        return 0.0
    return (x1 - x0) * (y1 - y0)


def _pad(box: PixelBBox, padding: float) -> PixelBBox:
    return (box[0] - padding, box[1] - padding, box[2] + padding, box[3] + padding)


def _center(box: PixelBBox) -> tuple[float, float]:
    return ((box[0] + box[2]) / 2.0, (box[1] + box[3]) / 2.0)


def _shift(box: PixelBBox, dx: float, dy: float) -> PixelBBox:
    return (box[0] + dx, box[1] + dy, box[2] + dx, box[3] + dy)


def total_overlap(
    boxes: Sequence[PixelBBox],
    obstacles: Sequence[PixelBBox] = (),
    *,
    padding_px: float = 0.0,
) -> float:
    padded = [_pad(box, padding_px) for box in boxes]
    total = 0.0
    for i, box in enumerate(padded):
        for other in padded[i + 1 :]:
            total += intersection_area(box, other)
        for obstacle in obstacles:
            total += intersection_area(box, obstacle)
    return total


def _away(
    box: PixelBBox,
    other: PixelBBox,
    fallback_idx: int,
) -> tuple[float, float]:
    cx, cy = _center(box)
    ox, oy = _center(other)
    dx, dy = cx - ox, cy - oy
    norm = math.hypot(dx, dy)
    if norm < 1e-9:
        angle = fallback_idx * _GOLDEN_ANGLE
        return (math.cos(angle), math.sin(angle))
    return (dx / norm, dy / norm)


def repel_labels(
    boxes: Sequence[PixelBBox],
    obstacles: Sequence[PixelBBox] = (),
    *,
    max_iterations: int = 200,
    step_px: float = 4.0,
    padding_px: float = 0.0,
) -> RepelResult:
    """Push overlapping label boxes apart and off point markers.

    Each iteration moves every colliding label one step away from whatever it
    overlaps. Iteration stops as soon as nothing overlaps; if the budget runs
    out, the least-overlapping layout seen so far is returned with
    `converged=False`.
    """
    current = [tuple(float(v) for v in box) for box in boxes]
    best_overlap = total_overlap(current, obstacles, padding_px=padding_px)
    best = tuple(current)
    if best_overlap <= 0.0:
        return RepelResult(boxes=best, iterations=0, converged=True, overlap=0.0)

    for iteration in range(1, max_iterations + 1):
        padded = [_pad(box, padding_px) for box in current]
        moves = [[0.0, 0.0] for _ in current]
        for i, box in enumerate(padded):
            for j in range(i + 1, len(padded)):
                if intersection_area(box, padded[j]) <= 0.0:
                    continue
                ux, uy = _away(box, padded[j], i)
                moves[i][0] += ux * step_px / 2.0
                moves[i][1] += uy * step_px / 2.0
                moves[j][0] -= ux * step_px / 2.0
                moves[j][1] -= uy * step_px / 2.0
            for obstacle in obstacles:
                if intersection_area(box, obstacle) <= 0.0:
                    continue
                ux, uy = _away(box, obstacle, i)
                moves[i][0] += ux * step_px
                moves[i][1] += uy * step_px

        current = [_shift(box, dx, dy) for box, (dx, dy) in zip(current, moves)]
        overlap = total_overlap(current, obstacles, padding_px=padding_px)
        if overlap < best_overlap:
            best_overlap = overlap
            best = tuple(current)
        if overlap <= 0.0:
            return RepelResult(boxes=tuple(current), iterations=iteration, converged=True, overlap=0.0)

    return RepelResult(boxes=best, iterations=max_iterations, converged=False, overlap=best_overlap)
