"""Normalized geometry model — points, boxes, and the shape tagged union.

All coordinates live in the [0, 1] image space (0 = top/left, 1 = bottom/right).
Shapes are closed tagged unions discriminated on ``kind``; freeform outlines are
ordered sequences of typed segments discriminated on ``op``.
"""

from __future__ import annotations

import math
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class Point(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float
    y: float


class BoundingBox(BaseModel):
    """Axis-aligned box: (min_x, min_y) top-left, (max_x, max_y) bottom-right."""

    model_config = ConfigDict(frozen=True)

    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @classmethod
    def from_list(cls, values: list[float] | tuple[float, ...]) -> BoundingBox:
        min_x, min_y, max_x, max_y = (float(v) for v in values)
        return cls(min_x=min_x, min_y=min_y, max_x=max_x, max_y=max_y)

    def as_list(self) -> list[float]:
        return [self.min_x, self.min_y, self.max_x, self.max_y]

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center(self) -> Point:
        return Point(x=(self.min_x + self.max_x) / 2, y=(self.min_y + self.max_y) / 2)

    @property
    def diagonal(self) -> float:
        return math.hypot(self.width, self.height)

    @property
    def is_well_formed(self) -> bool:
        return self.min_x < self.max_x and self.min_y < self.max_y

    @property
    def is_in_unit_range(self) -> bool:
        return all(0.0 <= v <= 1.0 for v in self.as_list())

    def contains(self, point: Point) -> bool:
        return self.min_x <= point.x <= self.max_x and self.min_y <= point.y <= self.max_y


# ---------------------------------------------------------------------------
# Freeform outline segments
# ---------------------------------------------------------------------------


class MoveTo(BaseModel):
    model_config = ConfigDict(frozen=True)

    op: Literal["move"] = "move"
    x: float
    y: float


class LineTo(BaseModel):
    model_config = ConfigDict(frozen=True)

    op: Literal["line"] = "line"
    x: float
    y: float


class QuadTo(BaseModel):
    model_config = ConfigDict(frozen=True)

    op: Literal["quad"] = "quad"
    cx: float
    cy: float
    x: float
    y: float


class CubicTo(BaseModel):
    model_config = ConfigDict(frozen=True)

    op: Literal["cubic"] = "cubic"
    c1x: float
    c1y: float
    c2x: float
    c2y: float
    x: float
    y: float


class ClosePath(BaseModel):
    model_config = ConfigDict(frozen=True)

    op: Literal["close"] = "close"


Segment = Annotated[
    Union[MoveTo, LineTo, QuadTo, CubicTo, ClosePath],
    Field(discriminator="op"),
]


# ---------------------------------------------------------------------------
# Shapes
# ---------------------------------------------------------------------------


class CircleShape(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["circle"] = "circle"
    center: Point
    radius: float


class RectShape(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["rect"] = "rect"
    origin: Point
    size: Point  # x = width, y = height
    corner_radius: float | None = None


class EllipseShape(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["ellipse"] = "ellipse"
    center: Point
    radii: Point  # x = rx, y = ry


class FreeformOutline(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["freeform"] = "freeform"
    segments: list[Segment] = Field(default_factory=list)

    def to_path_data(self, precision: int = 4) -> str:
        from rigforge.engine.outline import to_path_data

        return to_path_data(self, precision=precision)


Shape = Annotated[
    Union[CircleShape, RectShape, EllipseShape, FreeformOutline],
    Field(discriminator="kind"),
]
