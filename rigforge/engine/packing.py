"""Square-canvas bin packing — row, grid and MaxRects (guillotine) layouts.

Every algorithm is a pure function of its inputs: same items, same canvas,
same algorithm → identical placements. Placements are axis aligned, never
rotated, separated by a fixed padding, and kept inside
``[padding, canvas_size - padding]`` on both axes. All placement arithmetic is
done in integer pixels so the non-overlap guarantee is exact.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Sequence

from rigforge.engine.config import PipelineConfig
from rigforge.engine.errors import PackingOverflow
from rigforge.engine.geometry import bbox_pixel_size
from rigforge.models.atlas import ATLAS_SIZES, AtlasLayout, PackingAlgorithm
from rigforge.models.parts import AssemblyResult, AtlasRect, PackedPart

logger = logging.getLogger(__name__)


@dataclass
class PackItem:
    """A part to place, with its intrinsic (source-image) pixel size."""

    id: str
    width: int
    height: int


@dataclass
class PackResult:
    rects: dict[str, AtlasRect] = field(default_factory=dict)
    scale: float | None = None
    overflowed: list[str] = field(default_factory=list)


@dataclass
class _FreeRect:
    x: int
    y: int
    w: int
    h: int


def _scaled(item: PackItem, scale: float) -> tuple[int, int]:
    return max(1, int(item.width * scale)), max(1, int(item.height * scale))


def _initial_scale(items: Sequence[PackItem], canvas: int, pad: int, margin: float, reserve: int) -> float:
    """Area-based scale estimate, capped so the widest/tallest item still fits.

    ``reserve`` is the extra room an algorithm needs beyond the canvas interior
    (MaxRects keeps a trailing padding inside each free rectangle).
    """
    total_area = sum(it.width * it.height for it in items)
    available = canvas - pad * 2
    scale = math.sqrt(available * available / total_area) * margin
    usable = available - reserve
    max_w = max(it.width for it in items)
    max_h = max(it.height for it in items)
    return min(scale, usable / max_w, usable / max_h)


# ---------------------------------------------------------------------------
# Row
# ---------------------------------------------------------------------------


def _row_layout(items: Sequence[PackItem], canvas: int, pad: int, scale: float) -> dict[str, AtlasRect] | None:
    limit = canvas - pad
    rects: dict[str, AtlasRect] = {}
    x = y = pad
    row_h = 0

    for it in items:
        w, h = _scaled(it, scale)
        if x + w > limit and x > pad:
            x = pad
            y += row_h + pad
            row_h = 0
        if x + w > limit or y + h > limit:
            return None
        rects[it.id] = AtlasRect(x=x, y=y, w=w, h=h)
        x += w + pad
        row_h = max(row_h, h)

    return rects


def pack_row(items: Sequence[PackItem], canvas_size: int, config: PipelineConfig) -> PackResult:
    """Uniform scale, left-to-right rows, wrap when the next part would cross the edge."""
    pad = config.atlas_padding
    scale = _initial_scale(items, canvas_size, pad, config.row_safety_margin, reserve=0)

    for attempt in range(config.max_pack_attempts):
        rects = _row_layout(items, canvas_size, pad, scale)
        if rects is not None:
            if attempt:
                logger.debug("Row packing fit after %d shrink(s), scale=%.4f", attempt, scale)
            return PackResult(rects=rects, scale=scale)
        scale *= config.shrink_factor

    raise PackingOverflow(
        f"Row packing could not fit {len(items)} parts into {canvas_size}px",
        [it.id for it in items],
    )


# ---------------------------------------------------------------------------
# Grid
# ---------------------------------------------------------------------------


def pack_grid(items: Sequence[PackItem], canvas_size: int, config: PipelineConfig) -> PackResult:
    """Uniform cells, each part letterboxed into its cell at its own aspect ratio."""
    pad = config.atlas_padding
    n = len(items)
    cols = math.ceil(math.sqrt(n))
    rows = math.ceil(n / cols)
    cell_w = (canvas_size - pad * (cols + 1)) // cols
    cell_h = (canvas_size - pad * (rows + 1)) // rows
    if cell_w < 1 or cell_h < 1:
        raise PackingOverflow(
            f"Grid of {cols}x{rows} leaves no room for cells in {canvas_size}px",
            [it.id for it in items],
        )

    rects: dict[str, AtlasRect] = {}
    for i, it in enumerate(items):
        col = i % cols
        row = i // cols
        cell_x = pad + col * (cell_w + pad)
        cell_y = pad + row * (cell_h + pad)

        aspect = it.width / it.height
        if aspect > cell_w / cell_h:
            w = cell_w
            h = max(1, min(cell_h, int(cell_w / aspect)))
        else:
            h = cell_h
            w = max(1, min(cell_w, int(cell_h * aspect)))

        rects[it.id] = AtlasRect(
            x=cell_x + (cell_w - w) // 2,
            y=cell_y + (cell_h - h) // 2,
            w=w,
            h=h,
        )

    return PackResult(rects=rects, scale=None)


# ---------------------------------------------------------------------------
# MaxRects (guillotine split)
# ---------------------------------------------------------------------------


def _maxrects_layout(
    items: Sequence[PackItem],
    canvas: int,
    pad: int,
    scale: float,
    min_free: int,
) -> tuple[dict[str, AtlasRect], list[str]]:
    sized = [(it, *_scaled(it, scale)) for it in items]
    # Tallest first; stable sort keeps input order between equal heights
    order = sorted(sized, key=lambda s: -s[2])

    free = [_FreeRect(x=pad, y=pad, w=canvas - pad * 2, h=canvas - pad * 2)]
    rects: dict[str, AtlasRect] = {}
    overflowed: list[str] = []

    for it, w, h in order:
        best_idx = -1
        best_score: tuple[int, int] | None = None
        for idx, r in enumerate(free):
            if w + pad <= r.w and h + pad <= r.h:
                score = (r.y + h, r.x)  # top-most, then left-most
                if best_score is None or score < best_score:
                    best_score = score
                    best_idx = idx

        if best_idx < 0:
            rects[it.id] = AtlasRect(x=pad, y=pad, w=w, h=h)
            overflowed.append(it.id)
            continue

        r = free.pop(best_idx)
        rects[it.id] = AtlasRect(x=r.x, y=r.y, w=w, h=h)

        right_w = r.w - w - pad
        bottom_h = r.h - h - pad
        if right_w > min_free:
            free.append(_FreeRect(x=r.x + w + pad, y=r.y, w=right_w, h=h + pad))
        if bottom_h > min_free:
            free.append(_FreeRect(x=r.x, y=r.y + h + pad, w=r.w, h=bottom_h))

    return rects, overflowed


def pack_maxrects(
    items: Sequence[PackItem],
    canvas_size: int,
    config: PipelineConfig,
    strict: bool = False,
) -> PackResult:
    """Free-rectangle packing, tallest first, best (top, left) free slot.

    When a part fits no free rectangle, the whole layout is retried at a
    smaller scale. If it still does not fit after the last attempt, the part is
    placed at the padding corner (possibly overlapping) and reported in
    ``overflowed``; with ``strict`` a ``PackingOverflow`` is raised instead.
    """
    pad = config.atlas_padding
    scale = _initial_scale(items, canvas_size, pad, config.maxrects_safety_margin, reserve=pad)

    rects: dict[str, AtlasRect] = {}
    overflowed: list[str] = []
    for attempt in range(config.max_pack_attempts):
        rects, overflowed = _maxrects_layout(items, canvas_size, pad, scale, config.maxrects_min_free)
        if not overflowed:
            if attempt:
                logger.debug("MaxRects fit after %d shrink(s), scale=%.4f", attempt, scale)
            return PackResult(rects=rects, scale=scale)
        if attempt < config.max_pack_attempts - 1:
            scale *= config.shrink_factor

    if strict:
        raise PackingOverflow(
            f"MaxRects could not place {len(overflowed)} part(s) in {canvas_size}px",
            overflowed,
        )
    logger.warning(
        "MaxRects fallback: %d part(s) placed at canvas origin and may overlap: %s",
        len(overflowed),
        ", ".join(overflowed),
    )
    return PackResult(rects=rects, scale=scale, overflowed=overflowed)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def pack_items(
    items: Sequence[PackItem],
    canvas_size: int,
    algorithm: PackingAlgorithm | str = PackingAlgorithm.MAXRECTS,
    config: PipelineConfig | None = None,
    strict: bool = False,
) -> PackResult:
    """Pack sized items into a square canvas with the selected algorithm."""
    config = config or PipelineConfig()
    algorithm = PackingAlgorithm(algorithm)

    if canvas_size not in ATLAS_SIZES:
        raise ValueError(f"Unsupported atlas size {canvas_size}; expected one of {ATLAS_SIZES}")
    seen: set[str] = set()
    for it in items:
        if it.width <= 0 or it.height <= 0:
            raise ValueError(f"Part {it.id!r} has non-positive size {it.width}x{it.height}")
        if it.id in seen:
            raise ValueError(f"Duplicate part id {it.id!r}")
        seen.add(it.id)

    if not items:
        return PackResult()

    if algorithm is PackingAlgorithm.ROW:
        return pack_row(items, canvas_size, config)
    if algorithm is PackingAlgorithm.GRID:
        return pack_grid(items, canvas_size, config)
    return pack_maxrects(items, canvas_size, config, strict=strict)


def pack_parts(
    parts: Sequence[AssemblyResult],
    image_width: int,
    image_height: int,
    canvas_size: int = 1024,
    algorithm: PackingAlgorithm | str = PackingAlgorithm.MAXRECTS,
    config: PipelineConfig | None = None,
    strict: bool = False,
) -> AtlasLayout:
    """Size parts from their boxes in the source image and pack them into an atlas."""
    config = config or PipelineConfig()
    algorithm = PackingAlgorithm(algorithm)
    items = [PackItem(p.id, *bbox_pixel_size(p.bbox, image_width, image_height)) for p in parts]
    result = pack_items(items, canvas_size, algorithm, config, strict=strict)

    packed = [
        PackedPart.model_validate({**p.model_dump(), "atlas_rect": result.rects[p.id].model_dump()})
        for p in parts
    ]
    logger.info(
        "Packed %d parts into %dpx atlas (%s, scale=%s)",
        len(packed),
        canvas_size,
        algorithm.value,
        "per-cell" if result.scale is None else f"{result.scale:.4f}",
    )
    return AtlasLayout(
        canvas_size=canvas_size,
        algorithm=algorithm,
        padding=config.atlas_padding,
        scale=result.scale,
        parts=packed,
        overflowed=result.overflowed,
    )


def find_overlaps(rects: dict[str, AtlasRect]) -> list[tuple[str, str]]:
    """Every intersecting pair of placements."""
    ids = list(rects)
    overlaps: list[tuple[str, str]] = []
    for i, a in enumerate(ids):
        for b in ids[i + 1:]:
            if rects[a].intersects(rects[b]):
                overlaps.append((a, b))
    return overlaps


def find_out_of_bounds(rects: dict[str, AtlasRect], canvas_size: int, padding: int) -> list[str]:
    """Placements that leave ``[padding, canvas_size - padding]`` on either axis."""
    limit = canvas_size - padding
    return [
        pid
        for pid, r in rects.items()
        if r.x < padding or r.y < padding or r.x + r.w > limit or r.y + r.h > limit
    ]
