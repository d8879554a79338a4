"""Tests for shape model helpers: clamping, bounds, pivots."""

from __future__ import annotations

import math

import pytest

from rigforge.engine.geometry import (
    bbox_pixel_size,
    box_around,
    clamp_bbox,
    clamp_shape,
    expand_to_include,
    pivot_offset_ratio,
    rect_from_bbox,
    shape_bounds,
)
from rigforge.engine.outline import parse_path_data
from rigforge.models.geometry import (
    BoundingBox,
    CircleShape,
    EllipseShape,
    Point,
    RectShape,
)


class TestClampBbox:
    def test_in_range_box_is_unchanged(self):
        box = BoundingBox(min_x=0.1, min_y=0.2, max_x=0.8, max_y=0.9)
        assert clamp_bbox(box) == box

    def test_out_of_range_box_is_clamped(self):
        box = BoundingBox(min_x=-0.2, min_y=0.1, max_x=1.4, max_y=0.5)
        clamped = clamp_bbox(box)
        assert clamped.as_list() == [0.0, 0.1, 1.0, 0.5]

    @pytest.mark.parametrize(
        "values",
        [
            [-1.0, -1.0, 2.0, 2.0],
            [0.5, 0.5, 0.5, 0.5],
            [0.9, -0.3, 0.2, 3.0],
            [0.0, 0.0, 1.0, 1.0],
        ],
    )
    def test_idempotent(self, values):
        once = clamp_bbox(BoundingBox.from_list(values))
        assert clamp_bbox(once) == once


class TestClampShape:
    def test_circle(self):
        shape = clamp_shape(CircleShape(center=Point(x=1.3, y=-0.1), radius=0.2))
        assert shape.center == Point(x=1.0, y=0.0)
        assert shape.radius == 0.2

    def test_rect_keeps_corner_radius(self):
        shape = clamp_shape(
            RectShape(origin=Point(x=-0.1, y=0.2), size=Point(x=0.5, y=1.5), corner_radius=0.05)
        )
        assert shape.origin == Point(x=0.0, y=0.2)
        assert shape.size == Point(x=0.5, y=1.0)
        assert shape.corner_radius == 0.05

    def test_freeform_is_clamped_structurally(self):
        outline = parse_path_data("M -0.5 0.2 L 1.5 0.2 L 1.5 0.8 Z")
        clamped = clamp_shape(outline)
        bounds = shape_bounds(clamped)
        assert bounds.min_x == 0.0
        assert bounds.max_x == 1.0
        assert [s.op for s in clamped.segments] == [s.op for s in outline.segments]


class TestShapeBounds:
    def test_circle(self):
        bounds = shape_bounds(CircleShape(center=Point(x=0.5, y=0.5), radius=0.25))
        assert bounds.as_list() == [0.25, 0.25, 0.75, 0.75]

    def test_ellipse(self):
        bounds = shape_bounds(EllipseShape(center=Point(x=0.5, y=0.4), radii=Point(x=0.3, y=0.1)))
        assert bounds.as_list() == pytest.approx([0.2, 0.3, 0.8, 0.5])

    def test_rect_round_trip(self):
        box = BoundingBox(min_x=0.1, min_y=0.2, max_x=0.6, max_y=0.9)
        assert shape_bounds(rect_from_bbox(box)).as_list() == pytest.approx(box.as_list())


class TestBoxes:
    def test_box_around_is_clamped(self):
        box = box_around(Point(x=0.05, y=0.5), 0.1)
        assert box.min_x == 0.0
        assert box.max_x == pytest.approx(0.15)
        assert box.contains(Point(x=0.05, y=0.5))

    def test_expand_to_include(self):
        box = BoundingBox(min_x=0.2, min_y=0.2, max_x=0.4, max_y=0.4)
        grown = expand_to_include(box, Point(x=0.6, y=0.1))
        assert grown.as_list() == [0.2, 0.1, 0.6, 0.4]

    def test_pivot_offset_ratio(self):
        box = BoundingBox(min_x=0.0, min_y=0.0, max_x=0.3, max_y=0.4)
        assert pivot_offset_ratio(box.center, box) == 0.0
        # Corner sits half a diagonal from the centre
        assert pivot_offset_ratio(Point(x=0.0, y=0.0), box) == pytest.approx(0.5)

    def test_pivot_offset_ratio_degenerate_box(self):
        box = BoundingBox(min_x=0.5, min_y=0.5, max_x=0.5, max_y=0.5)
        assert math.isinf(pivot_offset_ratio(Point(x=0.5, y=0.5), box))

    def test_bbox_pixel_size(self):
        box = BoundingBox(min_x=0.1, min_y=0.25, max_x=0.6, max_y=0.5)
        assert bbox_pixel_size(box, 200, 100) == (100, 25)

    def test_bbox_pixel_size_is_at_least_one(self):
        box = BoundingBox(min_x=0.5, min_y=0.5, max_x=0.5001, max_y=0.5001)
        assert bbox_pixel_size(box, 64, 64) == (1, 1)
