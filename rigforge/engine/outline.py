"""Freeform outline operations — parse, serialize, sample, scale, clamp.

Outlines are structured segment lists, so scaling and clamping walk the
segments instead of rewriting path text. SVG path text is parsed once, on the
way in, through svgpathtools.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

import numpy as np
from numpy.typing import NDArray
from svgpathtools import Arc, CubicBezier, Line, QuadraticBezier, parse_path

from rigforge.models.geometry import (
    BoundingBox,
    ClosePath,
    CubicTo,
    FreeformOutline,
    LineTo,
    MoveTo,
    QuadTo,
)

logger = logging.getLogger(__name__)

# Arcs are flattened into this many line segments
_ARC_STEPS = 8
# Curve samples used for bounds / rasterization
_CURVE_SAMPLES = 16
# Subpath continuity tolerance (normalized units)
_CONTINUITY_EPS = 1e-9


def parse_path_data(d: str) -> FreeformOutline:
    """Parse SVG path text into a structured outline.

    Every continuous subpath becomes ``move ... close``. Arcs are flattened to
    lines. Raises ``ValueError`` when the text holds no drawable segment.
    """
    try:
        path = parse_path(d)
    except Exception as e:
        raise ValueError(f"Unparseable path data: {e}") from e

    if len(path) == 0:
        raise ValueError("Path data contains no segments")

    segments: list = []
    subpath_start: complex | None = None
    prev_end: complex | None = None

    for seg in path:
        if prev_end is None or abs(seg.start - prev_end) > _CONTINUITY_EPS:
            if subpath_start is not None:
                segments.append(ClosePath())
            segments.append(MoveTo(x=seg.start.real, y=seg.start.imag))
            subpath_start = seg.start

        if isinstance(seg, Line):
            segments.append(LineTo(x=seg.end.real, y=seg.end.imag))
        elif isinstance(seg, QuadraticBezier):
            segments.append(
                QuadTo(cx=seg.control.real, cy=seg.control.imag, x=seg.end.real, y=seg.end.imag)
            )
        elif isinstance(seg, CubicBezier):
            segments.append(
                CubicTo(
                    c1x=seg.control1.real,
                    c1y=seg.control1.imag,
                    c2x=seg.control2.real,
                    c2y=seg.control2.imag,
                    x=seg.end.real,
                    y=seg.end.imag,
                )
            )
        elif isinstance(seg, Arc):
            for t in np.linspace(0.0, 1.0, _ARC_STEPS + 1)[1:]:
                p = seg.point(float(t))
                segments.append(LineTo(x=p.real, y=p.imag))
        else:
            logger.debug("Skipping unsupported segment type %s", type(seg).__name__)
            continue
        prev_end = seg.end

    if subpath_start is not None:
        segments.append(ClosePath())

    return FreeformOutline(segments=segments)


def outline_from_polylines(polylines: Sequence[Sequence[tuple[float, float]]]) -> FreeformOutline:
    """Build a closed outline from one or more point rings."""
    segments: list = []
    for ring in polylines:
        if len(ring) < 3:
            continue
        x0, y0 = ring[0]
        segments.append(MoveTo(x=float(x0), y=float(y0)))
        for x, y in ring[1:]:
            segments.append(LineTo(x=float(x), y=float(y)))
        segments.append(ClosePath())
    return FreeformOutline(segments=segments)


def _fmt(v: float, precision: int) -> str:
    s = f"{v:.{precision}f}".rstrip("0").rstrip(".")
    return "0" if s in ("", "-0") else s


def to_path_data(outline: FreeformOutline, precision: int = 4) -> str:
    """Serialize an outline back to SVG path text (absolute commands)."""
    parts: list[str] = []
    f = lambda v: _fmt(v, precision)  # noqa: E731
    for seg in outline.segments:
        if isinstance(seg, MoveTo):
            parts.append(f"M{f(seg.x)} {f(seg.y)}")
        elif isinstance(seg, LineTo):
            parts.append(f"L{f(seg.x)} {f(seg.y)}")
        elif isinstance(seg, QuadTo):
            parts.append(f"Q{f(seg.cx)} {f(seg.cy)} {f(seg.x)} {f(seg.y)}")
        elif isinstance(seg, CubicTo):
            parts.append(
                f"C{f(seg.c1x)} {f(seg.c1y)} {f(seg.c2x)} {f(seg.c2y)} {f(seg.x)} {f(seg.y)}"
            )
        else:
            parts.append("Z")
    return " ".join(parts)


def map_coordinates(
    outline: FreeformOutline,
    fx: Callable[[float], float],
    fy: Callable[[float], float],
) -> FreeformOutline:
    """Apply per-axis coordinate functions to every point of every segment."""
    mapped: list = []
    for seg in outline.segments:
        if isinstance(seg, (MoveTo, LineTo)):
            mapped.append(seg.model_copy(update={"x": fx(seg.x), "y": fy(seg.y)}))
        elif isinstance(seg, QuadTo):
            mapped.append(
                seg.model_copy(
                    update={"cx": fx(seg.cx), "cy": fy(seg.cy), "x": fx(seg.x), "y": fy(seg.y)}
                )
            )
        elif isinstance(seg, CubicTo):
            mapped.append(
                seg.model_copy(
                    update={
                        "c1x": fx(seg.c1x),
                        "c1y": fy(seg.c1y),
                        "c2x": fx(seg.c2x),
                        "c2y": fy(seg.c2y),
                        "x": fx(seg.x),
                        "y": fy(seg.y),
                    }
                )
            )
        else:
            mapped.append(seg)
    return FreeformOutline(segments=mapped)


def scale_outline(
    outline: FreeformOutline,
    sx: float,
    sy: float | None = None,
    dx: float = 0.0,
    dy: float = 0.0,
) -> FreeformOutline:
    """Scale then translate: (x, y) → (x·sx + dx, y·sy + dy)."""
    sy = sx if sy is None else sy
    return map_coordinates(outline, lambda x: x * sx + dx, lambda y: y * sy + dy)


def clamp_outline(outline: FreeformOutline, lo: float = 0.0, hi: float = 1.0) -> FreeformOutline:
    clamp = lambda v: min(hi, max(lo, v))  # noqa: E731
    return map_coordinates(outline, clamp, clamp)


def sample_rings(outline: FreeformOutline, samples: int = _CURVE_SAMPLES) -> list[NDArray[np.float64]]:
    """Flatten each subpath into an (N, 2) array of points."""
    rings: list[NDArray[np.float64]] = []
    current: list[tuple[float, float]] = []
    cursor = (0.0, 0.0)
    ts = np.linspace(0.0, 1.0, samples + 1)[1:]

    for seg in outline.segments:
        if isinstance(seg, MoveTo):
            if len(current) > 0:
                rings.append(np.array(current, dtype=np.float64))
            current = [(seg.x, seg.y)]
            cursor = (seg.x, seg.y)
        elif isinstance(seg, LineTo):
            current.append((seg.x, seg.y))
            cursor = (seg.x, seg.y)
        elif isinstance(seg, QuadTo):
            p0, p1, p2 = np.array(cursor), np.array([seg.cx, seg.cy]), np.array([seg.x, seg.y])
            for t in ts:
                p = (1 - t) ** 2 * p0 + 2 * (1 - t) * t * p1 + t**2 * p2
                current.append((float(p[0]), float(p[1])))
            cursor = (seg.x, seg.y)
        elif isinstance(seg, CubicTo):
            p0 = np.array(cursor)
            p1 = np.array([seg.c1x, seg.c1y])
            p2 = np.array([seg.c2x, seg.c2y])
            p3 = np.array([seg.x, seg.y])
            for t in ts:
                p = (
                    (1 - t) ** 3 * p0
                    + 3 * (1 - t) ** 2 * t * p1
                    + 3 * (1 - t) * t**2 * p2
                    + t**3 * p3
                )
                current.append((float(p[0]), float(p[1])))
            cursor = (seg.x, seg.y)
        elif isinstance(seg, ClosePath):
            if len(current) > 0:
                rings.append(np.array(current, dtype=np.float64))
                cursor = current[0]
            current = []

    if len(current) > 0:
        rings.append(np.array(current, dtype=np.float64))
    return rings


def outline_bounds(outline: FreeformOutline) -> BoundingBox | None:
    """Tight bounds of the sampled outline, or None for an empty outline."""
    rings = [r for r in sample_rings(outline) if len(r) > 0]
    if not rings:
        return None
    pts = np.vstack(rings)
    return BoundingBox(
        min_x=float(np.min(pts[:, 0])),
        min_y=float(np.min(pts[:, 1])),
        max_x=float(np.max(pts[:, 0])),
        max_y=float(np.max(pts[:, 1])),
    )
