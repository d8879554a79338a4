"""Tests for freeform outline parsing and structural transforms."""

from __future__ import annotations

import pytest

from rigforge.engine.outline import (
    clamp_outline,
    outline_bounds,
    outline_from_polylines,
    parse_path_data,
    sample_rings,
    scale_outline,
    to_path_data,
)
from rigforge.models.geometry import ClosePath, CubicTo, FreeformOutline, LineTo, MoveTo, QuadTo

SQUARE = "M 0.1 0.1 L 0.9 0.1 L 0.9 0.9 L 0.1 0.9 Z"


class TestParse:
    def test_square(self):
        outline = parse_path_data(SQUARE)
        assert isinstance(outline.segments[0], MoveTo)
        assert isinstance(outline.segments[-1], ClosePath)
        assert all(isinstance(s, LineTo) for s in outline.segments[1:-1])
        bounds = outline_bounds(outline)
        assert bounds.as_list() == pytest.approx([0.1, 0.1, 0.9, 0.9])

    def test_relative_commands(self):
        outline = parse_path_data("m 0.2 0.2 l 0.5 0 l 0 0.5 z")
        assert outline_bounds(outline).as_list() == pytest.approx([0.2, 0.2, 0.7, 0.7])

    def test_curves_are_kept_as_curves(self):
        outline = parse_path_data("M 0 0 Q 0.5 1 1 0 C 1 0.5 0.5 0.5 0 0 Z")
        kinds = {type(s) for s in outline.segments}
        assert QuadTo in kinds
        assert CubicTo in kinds

    def test_two_subpaths(self):
        outline = parse_path_data(SQUARE + " M 0.3 0.3 L 0.6 0.3 L 0.6 0.6 Z")
        moves = [s for s in outline.segments if isinstance(s, MoveTo)]
        closes = [s for s in outline.segments if isinstance(s, ClosePath)]
        assert len(moves) == 2
        assert len(closes) == 2

    def test_arc_is_flattened(self):
        outline = parse_path_data("M 0.1 0.5 A 0.4 0.4 0 0 1 0.9 0.5 Z")
        assert not any(isinstance(s, (QuadTo, CubicTo)) for s in outline.segments)
        bounds = outline_bounds(outline)
        assert bounds.max_y - bounds.min_y > 0.3

    @pytest.mark.parametrize("d", ["", "   "])
    def test_empty_path_rejected(self, d):
        with pytest.raises(ValueError):
            parse_path_data(d)


class TestSerialize:
    def test_to_path_data(self):
        outline = outline_from_polylines([[(0.1, 0.1), (0.5, 0.1), (0.5, 0.5)]])
        assert to_path_data(outline) == "M0.1 0.1 L0.5 0.1 L0.5 0.5 Z"

    def test_model_method_matches(self):
        outline = parse_path_data(SQUARE)
        assert outline.to_path_data() == to_path_data(outline)

    def test_reparse_preserves_bounds(self):
        outline = parse_path_data("M 0.2 0.3 C 0.4 0.1 0.6 0.1 0.8 0.3 L 0.5 0.8 Z")
        again = parse_path_data(to_path_data(outline))
        assert outline_bounds(again).as_list() == pytest.approx(outline_bounds(outline).as_list(), abs=1e-4)


class TestTransforms:
    def test_scale_and_translate(self):
        outline = parse_path_data(SQUARE)
        moved = scale_outline(outline, 0.5, dx=0.1, dy=0.2)
        assert outline_bounds(moved).as_list() == pytest.approx([0.15, 0.25, 0.55, 0.65])

    def test_scale_per_axis(self):
        outline = parse_path_data(SQUARE)
        stretched = scale_outline(outline, 1.0, 0.5)
        assert outline_bounds(stretched).as_list() == pytest.approx([0.1, 0.05, 0.9, 0.45])

    def test_clamp_moves_control_points(self):
        outline = FreeformOutline(
            segments=[
                MoveTo(x=0.1, y=0.1),
                CubicTo(c1x=-0.5, c1y=0.2, c2x=1.5, c2y=0.3, x=0.9, y=0.9),
                ClosePath(),
            ]
        )
        cubic = clamp_outline(outline).segments[1]
        assert cubic.c1x == 0.0
        assert cubic.c2x == 1.0

    def test_sample_rings(self):
        outline = parse_path_data(SQUARE + " M 0.3 0.3 L 0.6 0.3 L 0.6 0.6 Z")
        rings = sample_rings(outline)
        assert len(rings) == 2
        assert rings[0].shape[1] == 2

    def test_empty_outline_has_no_bounds(self):
        assert outline_bounds(FreeformOutline(segments=[])) is None
