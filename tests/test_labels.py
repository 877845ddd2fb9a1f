from __future__ import annotations

import pytest

from reportmaps.labels import intersection_area, repel_labels, total_overlap


def test_separated_boxes_are_left_alone() -> None:
    boxes = [(0.0, 0.0, 10.0, 5.0), (20.0, 0.0, 30.0, 5.0)]

    result = repel_labels(boxes)

    assert result.converged
    assert result.iterations == 0
    assert result.boxes == tuple(boxes)


def test_overlapping_boxes_separate_within_budget() -> None:
    boxes = [(0.0, 0.0, 40.0, 10.0), (10.0, 2.0, 50.0, 12.0), (5.0, -3.0, 45.0, 7.0)]

    result = repel_labels(boxes, max_iterations=200, step_px=4.0, padding_px=1.0)

    assert result.converged
    assert result.overlap == 0.0
    assert total_overlap(result.boxes, padding_px=1.0) == 0.0
    for before, after in zip(boxes, result.boxes):
        assert after[2] - after[0] == pytest.approx(before[2] - before[0])
        assert after[3] - after[1] == pytest.approx(before[3] - before[1])


def test_coincident_boxes_separate() -> None:
    boxes = [(0.0, 0.0, 10.0, 10.0), (0.0, 0.0, 10.0, 10.0)]

    result = repel_labels(boxes)

    assert result.converged
    assert intersection_area(result.boxes[0], result.boxes[1]) == 0.0


def test_labels_move_off_point_markers() -> None:
    marker = (0.0, 0.0, 6.0, 6.0)

    result = repel_labels([(2.0, 2.0, 12.0, 8.0)], [marker])

    assert result.converged
    assert intersection_area(result.boxes[0], marker) == 0.0


def test_exhausted_budget_returns_best_layout() -> None:
    boxes = [(0.0, 0.0, 10.0, 10.0), (5.0, 5.0, 15.0, 15.0)]

    result = repel_labels(boxes, max_iterations=0)

    assert not result.converged
    assert result.boxes == tuple(boxes)
    assert result.overlap == total_overlap(boxes)


def test_partial_budget_keeps_least_overlap() -> None:
    boxes = [(0.0, 0.0, 100.0, 10.0), (0.0, 0.0, 100.0, 10.0)]

    result = repel_labels(boxes, max_iterations=1, step_px=2.0)

    assert not result.converged
    assert 0.0 < result.overlap < total_overlap(boxes)
