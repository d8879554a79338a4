"""Synthesis request preparation.

The image synthesis service is external. The core hands it the source image,
a numbered layout template, the ``id → atlas_rect`` mapping and a
correspondence list tying each numbered box to its part.
"""

from __future__ import annotations

import logging
from typing import Protocol

from pydantic import BaseModel, Field

from rigforge.engine.compositing import render_layout_template
from rigforge.engine.errors import ServiceError
from rigforge.models.atlas import AtlasLayout
from rigforge.models.parts import AtlasRect

logger = logging.getLogger(__name__)

_SYNTHESIS_TEMPLATE = """TASK: separate the original image into parts.

INPUTS:
1. ORIGINAL_IMAGE: the original object with all parts.
2. LAYOUT_TEMPLATE: a {size}x{size} square with numbered boxes (#1, #2, ...) where the parts must be drawn.

NUMBER-TO-PART MAPPING:
{correspondence}

INSTRUCTIONS:
- Each numbered box in the LAYOUT_TEMPLATE corresponds to one part of the ORIGINAL_IMAGE.
- Fill each box with its part without changing perspective or style.
- Do not draw the box outlines or numbers.
- Output only the drawn parts on a clean white background.
- For parts partially hidden in the original, draw the entire part as it would look fully visible and detached.
- Keep lighting, style and perspective consistent across all parts."""


class SynthesisRequest(BaseModel):
    source_image: str = Field(..., description="Base64 PNG of the source image")
    layout_template: str = Field(..., description="Base64 PNG of the numbered layout")
    mapping: dict[str, AtlasRect]
    correspondence: str
    prompt: str


class SynthesisService(Protocol):
    async def synthesize(self, request: SynthesisRequest) -> str:
        """Return the generated atlas as base64 PNG, or raise."""
        ...


def build_correspondence(layout: AtlasLayout) -> str:
    """One line per numbered box, in layout order (numbers match the template)."""
    lines = []
    for n, part in enumerate(layout.parts, start=1):
        bbox = ",".join(f"{v:.3f}" for v in part.bbox.as_list())
        target = ",".join(str(v) for v in part.atlas_rect.as_list())
        name = part.display_name or part.id
        lines.append(
            f'- Box #{n} = "{name}": (Shape: {part.shape.kind}, BBox: [{bbox}]) -> (Target rect: [{target}])'
        )
    return "\n".join(lines)


def prepare_synthesis_request(source_image: str, layout: AtlasLayout) -> SynthesisRequest:
    if not layout.parts:
        raise ValueError("Layout has no parts to synthesize")
    correspondence = build_correspondence(layout)
    return SynthesisRequest(
        source_image=source_image,
        layout_template=render_layout_template(layout),
        mapping=layout.mapping(),
        correspondence=correspondence,
        prompt=_SYNTHESIS_TEMPLATE.format(size=layout.canvas_size, correspondence=correspondence),
    )


async def synthesize_atlas(service: SynthesisService, source_image: str, layout: AtlasLayout) -> str:
    """Prepare the request and hand it to the synthesis service."""
    request = prepare_synthesis_request(source_image, layout)
    try:
        image = await service.synthesize(request)
    except ServiceError:
        raise
    except Exception as e:
        raise ServiceError(f"synthesis: {e}", "synthesis") from e
    if not image:
        raise ServiceError("synthesis: No image generated", "synthesis")
    logger.info("Synthesized %dpx atlas for %d parts", layout.canvas_size, len(layout.parts))
    return image
