"""Leaf-node geometry helpers over the normalized shape model. No engine imports."""

from __future__ import annotations

import math

from rigforge.engine.outline import clamp_outline, outline_bounds
from rigforge.models.geometry import (
    BoundingBox,
    CircleShape,
    EllipseShape,
    FreeformOutline,
    Point,
    RectShape,
    Shape,
)


def clamp_unit(v: float) -> float:
    """Clamp a relative coordinate into [0, 1]."""
    return max(0.0, min(1.0, v))


def clamp_point(p: Point) -> Point:
    return Point(x=clamp_unit(p.x), y=clamp_unit(p.y))


def clamp_bbox(bbox: BoundingBox) -> BoundingBox:
    """Clamp every edge into [0, 1]. In-range boxes come back equal; idempotent."""
    return BoundingBox(
        min_x=clamp_unit(bbox.min_x),
        min_y=clamp_unit(bbox.min_y),
        max_x=clamp_unit(bbox.max_x),
        max_y=clamp_unit(bbox.max_y),
    )


def clamp_shape(shape: Shape) -> Shape:
    """Clamp every coordinate of a shape into [0, 1]."""
    if isinstance(shape, CircleShape):
        return CircleShape(center=clamp_point(shape.center), radius=clamp_unit(shape.radius))
    if isinstance(shape, RectShape):
        return RectShape(
            origin=clamp_point(shape.origin),
            size=clamp_point(shape.size),
            corner_radius=None if shape.corner_radius is None else clamp_unit(shape.corner_radius),
        )
    if isinstance(shape, EllipseShape):
        return EllipseShape(center=clamp_point(shape.center), radii=clamp_point(shape.radii))
    return clamp_outline(shape)


def shape_bounds(shape: Shape) -> BoundingBox | None:
    """Tight bounding box of a shape (unclamped). None for an empty outline."""
    if isinstance(shape, CircleShape):
        c, r = shape.center, shape.radius
        return BoundingBox(min_x=c.x - r, min_y=c.y - r, max_x=c.x + r, max_y=c.y + r)
    if isinstance(shape, RectShape):
        o, s = shape.origin, shape.size
        return BoundingBox(min_x=o.x, min_y=o.y, max_x=o.x + s.x, max_y=o.y + s.y)
    if isinstance(shape, EllipseShape):
        c, r = shape.center, shape.radii
        return BoundingBox(min_x=c.x - r.x, min_y=c.y - r.y, max_x=c.x + r.x, max_y=c.y + r.y)
    if isinstance(shape, FreeformOutline):
        return outline_bounds(shape)
    return None


def rect_from_bbox(bbox: BoundingBox) -> RectShape:
    return RectShape(
        origin=Point(x=bbox.min_x, y=bbox.min_y),
        size=Point(x=bbox.width, y=bbox.height),
    )


def expand_to_include(bbox: BoundingBox, point: Point) -> BoundingBox:
    return BoundingBox(
        min_x=min(bbox.min_x, point.x),
        min_y=min(bbox.min_y, point.y),
        max_x=max(bbox.max_x, point.x),
        max_y=max(bbox.max_y, point.y),
    )


def box_around(point: Point, half_extent: float) -> BoundingBox:
    """Clamped square box centred on a point."""
    return clamp_bbox(
        BoundingBox(
            min_x=point.x - half_extent,
            min_y=point.y - half_extent,
            max_x=point.x + half_extent,
            max_y=point.y + half_extent,
        )
    )


def pivot_offset_ratio(pivot: Point, bbox: BoundingBox) -> float:
    """Distance of the pivot from the box centre as a fraction of the box diagonal."""
    diag = bbox.diagonal
    if diag <= 0:
        return math.inf
    c = bbox.center
    return math.hypot(pivot.x - c.x, pivot.y - c.y) / diag


def bbox_pixel_size(bbox: BoundingBox, image_width: int, image_height: int) -> tuple[int, int]:
    """Intrinsic pixel size of a normalized box in the source image (at least 1×1)."""
    w = max(1, int(round(abs(bbox.width) * image_width)))
    h = max(1, int(round(abs(bbox.height) * image_height)))
    return w, h
