"""Pillow compositing — candidate overlays for critique, numbered atlas templates."""

from __future__ import annotations

import logging

from PIL import Image, ImageDraw

from rigforge.engine.outline import sample_rings
from rigforge.models.atlas import AtlasLayout
from rigforge.models.geometry import (
    BoundingBox,
    CircleShape,
    EllipseShape,
    FreeformOutline,
    RectShape,
    Shape,
)
from rigforge.utils.imaging import decode_image, encode_png

logger = logging.getLogger(__name__)

OVERLAY_COLOR = (255, 0, 255, 255)
OVERLAY_FILL = (255, 0, 255, 64)
BBOX_COLOR = (0, 200, 255, 255)
TEMPLATE_BACKGROUND = (255, 255, 255, 255)
TEMPLATE_BOX = (40, 40, 40, 255)


def _stroke_width(width: int, height: int) -> int:
    return max(1, round(min(width, height) / 256))


def draw_shape(draw: ImageDraw.ImageDraw, shape: Shape, width: int, height: int, stroke: int) -> None:
    """Draw a normalized shape onto a ``width`` × ``height`` canvas."""
    if isinstance(shape, CircleShape):
        c, r = shape.center, shape.radius
        box = [(c.x - r) * width, (c.y - r) * height, (c.x + r) * width, (c.y + r) * height]
        draw.ellipse(box, fill=OVERLAY_FILL, outline=OVERLAY_COLOR, width=stroke)
    elif isinstance(shape, EllipseShape):
        c, r = shape.center, shape.radii
        box = [
            (c.x - r.x) * width,
            (c.y - r.y) * height,
            (c.x + r.x) * width,
            (c.y + r.y) * height,
        ]
        draw.ellipse(box, fill=OVERLAY_FILL, outline=OVERLAY_COLOR, width=stroke)
    elif isinstance(shape, RectShape):
        o, s = shape.origin, shape.size
        box = [o.x * width, o.y * height, (o.x + s.x) * width, (o.y + s.y) * height]
        if shape.corner_radius:
            radius = shape.corner_radius * min(width, height)
            draw.rounded_rectangle(box, radius=radius, fill=OVERLAY_FILL, outline=OVERLAY_COLOR, width=stroke)
        else:
            draw.rectangle(box, fill=OVERLAY_FILL, outline=OVERLAY_COLOR, width=stroke)
    elif isinstance(shape, FreeformOutline):
        for ring in sample_rings(shape):
            if len(ring) < 2:
                continue
            pts = [(float(x) * width, float(y) * height) for x, y in ring]
            if len(pts) >= 3:
                draw.polygon(pts, fill=OVERLAY_FILL)
            draw.line(pts + [pts[0]], fill=OVERLAY_COLOR, width=stroke)


def render_overlay(image: str | Image.Image, shape: Shape, bbox: BoundingBox | None = None) -> str:
    """Source image with the candidate shape (and optionally its bbox) drawn on top.

    Returns base64 PNG.
    """
    base = decode_image(image) if isinstance(image, str) else image.convert("RGBA")
    width, height = base.size
    layer = Image.new("RGBA", base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)
    stroke = _stroke_width(width, height)

    draw_shape(draw, shape, width, height, stroke)
    if bbox is not None:
        draw.rectangle(
            [bbox.min_x * width, bbox.min_y * height, bbox.max_x * width, bbox.max_y * height],
            outline=BBOX_COLOR,
            width=stroke,
        )

    return encode_png(Image.alpha_composite(base, layer))


def render_layout_template(layout: AtlasLayout) -> str:
    """Blank canvas with every atlas rect outlined and numbered in layout order."""
    size = layout.canvas_size
    canvas = Image.new("RGBA", (size, size), TEMPLATE_BACKGROUND)
    draw = ImageDraw.Draw(canvas)
    stroke = _stroke_width(size, size)

    for n, part in enumerate(layout.parts, start=1):
        r = part.atlas_rect
        draw.rectangle([r.x, r.y, r.x + r.w - 1, r.y + r.h - 1], outline=TEMPLATE_BOX, width=stroke)
        draw.text((r.x + stroke + 2, r.y + stroke + 2), f"#{n}", fill=TEMPLATE_BOX)

    logger.debug("Rendered %dpx layout template with %d boxes", size, len(layout.parts))
    return encode_png(canvas)
