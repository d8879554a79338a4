"""POST /api/atlas/* — stateless packing and hierarchy validation."""

from __future__ import annotations

from fastapi import APIRouter

from rigforge.api.errors import http_error
from rigforge.engine.compositing import render_layout_template
from rigforge.engine.config import PipelineConfig
from rigforge.engine.errors import PackingOverflow
from rigforge.engine.hierarchy import validate_hierarchy
from rigforge.engine.packing import pack_parts
from rigforge.engine.synthesis import build_correspondence
from rigforge.models.atlas import AtlasLayout
from rigforge.models.requests import PackRequest, ValidateRequest
from rigforge.models.responses import PackResponse, ValidateResponse

router = APIRouter(prefix="/atlas")


def pack_response(layout: AtlasLayout, include_template: bool) -> PackResponse:
    return PackResponse(
        layout=layout,
        correspondence=build_correspondence(layout),
        layout_template=render_layout_template(layout) if include_template else None,
    )


@router.post("/pack", response_model=PackResponse)
async def pack(req: PackRequest) -> PackResponse:
    try:
        layout = pack_parts(
            req.parts,
            req.image_width,
            req.image_height,
            canvas_size=req.canvas_size,
            algorithm=req.algorithm,
            config=PipelineConfig(),
            strict=req.strict,
        )
    except (PackingOverflow, ValueError) as e:
        raise http_error(e) from e
    return pack_response(layout, req.include_template)


@router.post("/validate", response_model=ValidateResponse)
async def validate(req: ValidateRequest) -> ValidateResponse:
    return ValidateResponse.from_report(validate_hierarchy(req.parts))
