"""Tests for synthesis request preparation."""

from __future__ import annotations

import asyncio

import pytest

from rigforge.engine.errors import ServiceError
from rigforge.engine.packing import pack_parts
from rigforge.engine.synthesis import build_correspondence, prepare_synthesis_request, synthesize_atlas
from rigforge.models.atlas import AtlasLayout, PackingAlgorithm
from tests.conftest import CAR_PNG, car_parts


class FakeSynthesisService:
    def __init__(self, result="aW1hZ2U=", error=None):
        self.result = result
        self.error = error
        self.requests = []

    async def synthesize(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def layout():
    return pack_parts(car_parts(), 256, 256, 1024)


class TestCorrespondence:
    def test_one_line_per_box(self, layout):
        lines = build_correspondence(layout).splitlines()
        assert len(lines) == 3
        assert lines[0].startswith('- Box #1 = "chassis": (Shape: rect, BBox: [0.100,0.300,0.900,0.650])')
        assert lines[1].startswith('- Box #2 = "wheel_front": (Shape: circle')

    def test_target_rect_matches_layout(self, layout):
        rect = layout.parts[2].atlas_rect
        line = build_correspondence(layout).splitlines()[2]
        assert line.endswith(f"(Target rect: [{rect.x},{rect.y},{rect.w},{rect.h}])")


class TestPrepare:
    def test_request(self, layout):
        request = prepare_synthesis_request(CAR_PNG, layout)
        assert request.source_image == CAR_PNG
        assert set(request.mapping) == {"chassis", "wheel_front", "wheel_rear"}
        assert request.mapping["chassis"] == layout.parts[0].atlas_rect
        assert "1024x1024" in request.prompt
        assert request.correspondence in request.prompt

    def test_empty_layout(self):
        empty = AtlasLayout(canvas_size=1024, algorithm=PackingAlgorithm.GRID, padding=16)
        with pytest.raises(ValueError):
            prepare_synthesis_request(CAR_PNG, empty)


class TestSynthesize:
    def test_returns_image(self, layout):
        service = FakeSynthesisService()
        assert asyncio.run(synthesize_atlas(service, CAR_PNG, layout)) == "aW1hZ2U="
        assert len(service.requests) == 1

    def test_failure_wrapped(self, layout):
        service = FakeSynthesisService(error=RuntimeError("quota"))
        with pytest.raises(ServiceError) as exc:
            asyncio.run(synthesize_atlas(service, CAR_PNG, layout))
        assert exc.value.stage == "synthesis"

    def test_empty_result(self, layout):
        with pytest.raises(ServiceError, match="No image"):
            asyncio.run(synthesize_atlas(FakeSynthesisService(result=""), CAR_PNG, layout))
