"""Shared test fixtures: a small car image, its scripted model responses, fake services."""

from __future__ import annotations

import asyncio
import base64
import io
import json
from typing import Any

import numpy as np
import pytest
from PIL import Image, ImageDraw

from rigforge.engine.config import PipelineConfig
from rigforge.llm.client import ReasoningRequest
from rigforge.models.geometry import BoundingBox, CircleShape, Point, RectShape
from rigforge.models.parts import AssemblyResult, DiscoveryUnit, MotionClass, TypeHint


def make_png(width: int = 256, height: int = 256) -> str:
    """Base64 PNG of a crude side-view car: body rectangle and two wheels."""
    image = Image.new("RGBA", (width, height), (255, 255, 255, 255))
    draw = ImageDraw.Draw(image)
    draw.rectangle([0.1 * width, 0.3 * height, 0.9 * width, 0.65 * height], fill=(200, 40, 40, 255))
    for cx in (0.25, 0.75):
        draw.ellipse(
            [(cx - 0.12) * width, 0.63 * height, (cx + 0.12) * width, 0.87 * height],
            fill=(30, 30, 30, 255),
        )
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


CAR_PNG = make_png()

CAR_MANIFEST: list[dict[str, Any]] = [
    {
        "id": "wheel_front",
        "name": "Front Wheel",
        "visual_anchor": [0.75, 0.75],
        "rough_bbox": [0.6, 0.6, 0.9, 0.9],
        "type_hint": "WHEEL",
    },
    {
        "id": "wheel_rear",
        "name": "Rear Wheel",
        "visual_anchor": [0.25, 0.75],
        "rough_bbox": [0.1, 0.6, 0.4, 0.9],
        "type_hint": "WHEEL",
    },
    {
        "id": "chassis",
        "name": "Chassis",
        "visual_anchor": [0.5, 0.45],
        "rough_bbox": [0.05, 0.25, 0.95, 0.7],
        "type_hint": "BODY",
    },
]

CAR_GEOMETRY: dict[str, dict[str, Any]] = {
    "wheel_front": {
        "id": "wheel_front",
        "shape": {"type": "circle", "cx": 0.75, "cy": 0.75, "r": 0.12},
        "bbox": [0.63, 0.63, 0.87, 0.87],
        "amodal_completed": False,
        "confidence": 0.92,
    },
    "wheel_rear": {
        "id": "wheel_rear",
        "shape": {"type": "circle", "cx": 0.25, "cy": 0.75, "r": 0.12},
        "bbox": [0.13, 0.63, 0.37, 0.87],
        "amodal_completed": True,
        "confidence": 0.88,
    },
    "chassis": {
        "id": "chassis",
        "shape": {"type": "rect", "x": 0.1, "y": 0.3, "width": 0.8, "height": 0.35, "rx": 0.02},
        "bbox": [0.1, 0.3, 0.9, 0.65],
        "amodal_completed": True,
        "confidence": 0.85,
    },
}

CAR_RIGGING: list[dict[str, Any]] = [
    {
        "id": "chassis",
        "name": "Chassis",
        "parentId": None,
        "pivot": {"x": 0.5, "y": 0.475},
        "movementType": "FIXED",
    },
    {
        "id": "wheel_front",
        "name": "Front Wheel",
        "parentId": "chassis",
        "pivot": {"x": 0.75, "y": 0.75},
        "movementType": "ROTATION",
    },
    {
        "id": "wheel_rear",
        "name": "Rear Wheel",
        "parentId": "chassis",
        "pivot": {"x": 0.25, "y": 0.75},
        "movementType": "ROTATION",
    },
]

ACCEPT = {"verdict": "acceptable", "feedback": "Outline matches the part."}
REJECT = {"verdict": "needs_improvement", "feedback": "Grow the outline to the left edge."}


# ---------------------------------------------------------------------------
# Fake services
# ---------------------------------------------------------------------------


class Seq:
    """Scripted responses consumed in order; the last one repeats."""

    def __init__(self, *items: Any) -> None:
        self.items = list(items)

    def next(self) -> Any:
        if len(self.items) > 1:
            return self.items.pop(0)
        return self.items[0]


def _take(script: Any) -> Any:
    return script.next() if isinstance(script, Seq) else script


class FakeReasoningService:
    """Reasoning service scripted per task (and per unit for extraction / critique).

    A scripted value is returned as JSON text; an exception instance is
    raised; a ``Seq`` yields its items in order.
    """

    def __init__(
        self,
        discovery: Any = None,
        extraction: dict[str, Any] | None = None,
        critique: dict[str, Any] | Any = None,
        assembly: Any = None,
    ) -> None:
        self.discovery = CAR_MANIFEST if discovery is None else discovery
        self.extraction = dict(CAR_GEOMETRY) if extraction is None else extraction
        self.critique = ACCEPT if critique is None else critique
        self.assembly = CAR_RIGGING if assembly is None else assembly
        self.requests: list[ReasoningRequest] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def _script(self, request: ReasoningRequest) -> Any:
        if request.task == "discovery":
            return self.discovery
        if request.task == "assembly":
            return self.assembly
        if request.task == "critique":
            if isinstance(self.critique, dict) and request.unit_id in self.critique:
                return self.critique[request.unit_id]
            return self.critique
        return self.extraction[request.unit_id]

    async def generate(self, request: ReasoningRequest, on_chunk=None) -> str:
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            value = _take(self._script(request))
        finally:
            self.in_flight -= 1

        if isinstance(value, Exception):
            raise value
        text = value if isinstance(value, str) else json.dumps(value)
        if on_chunk is not None:
            on_chunk(text)
        return text

    def calls(self, task: str, unit_id: str | None = None) -> list[ReasoningRequest]:
        return [
            r for r in self.requests if r.task == task and (unit_id is None or r.unit_id == unit_id)
        ]


class FakeSegmentationService:
    def __init__(self, mask: np.ndarray) -> None:
        self.mask = mask
        self.calls = 0

    async def segment(self, image: str, rough_bbox: BoundingBox) -> np.ndarray:
        self.calls += 1
        return self.mask


def disk_mask(size: int = 64, cx: int = 32, cy: int = 32, r: int = 12) -> np.ndarray:
    yy, xx = np.mgrid[0:size, 0:size]
    return ((xx - cx) ** 2 + (yy - cy) ** 2 <= r * r).astype(np.uint8) * 255


# ---------------------------------------------------------------------------
# Model builders
# ---------------------------------------------------------------------------


def make_unit(unit_id: str = "wheel", extraction_strategy: str = "primitive_fit") -> DiscoveryUnit:
    return DiscoveryUnit(
        id=unit_id,
        display_name=unit_id.replace("_", " ").title(),
        anchor_point=Point(x=0.5, y=0.5),
        rough_bbox=BoundingBox(min_x=0.3, min_y=0.3, max_x=0.7, max_y=0.7),
        type_hint=TypeHint.WHEEL,
        extraction_strategy=extraction_strategy,
    )


def circle_payload(unit_id: str, cx: float = 0.5, cy: float = 0.5, r: float = 0.2, confidence: float = 0.9) -> dict:
    return {
        "id": unit_id,
        "shape": {"type": "circle", "cx": cx, "cy": cy, "r": r},
        "bbox": [cx - r, cy - r, cx + r, cy + r],
        "amodal_completed": False,
        "confidence": confidence,
    }


def make_part(
    part_id: str,
    parent_id: str | None = None,
    bbox: tuple[float, float, float, float] = (0.1, 0.1, 0.3, 0.3),
    pivot: tuple[float, float] | None = None,
    motion: MotionClass = MotionClass.FIXED,
) -> AssemblyResult:
    box = BoundingBox.from_list(bbox)
    return AssemblyResult(
        id=part_id,
        shape=RectShape(origin=Point(x=box.min_x, y=box.min_y), size=Point(x=box.width, y=box.height)),
        bbox=box,
        confidence=0.9,
        display_name=part_id,
        parent_id=parent_id,
        pivot=Point(x=pivot[0], y=pivot[1]) if pivot else box.center,
        motion_class=motion,
    )


def car_parts() -> list[AssemblyResult]:
    chassis = make_part("chassis", bbox=(0.1, 0.3, 0.9, 0.65))
    front = AssemblyResult(
        id="wheel_front",
        shape=CircleShape(center=Point(x=0.75, y=0.75), radius=0.12),
        bbox=BoundingBox(min_x=0.63, min_y=0.63, max_x=0.87, max_y=0.87),
        confidence=0.92,
        parent_id="chassis",
        pivot=Point(x=0.75, y=0.75),
        motion_class=MotionClass.ROTATION,
    )
    rear = front.model_copy(
        update={
            "id": "wheel_rear",
            "shape": CircleShape(center=Point(x=0.25, y=0.75), radius=0.12),
            "bbox": BoundingBox(min_x=0.13, min_y=0.63, max_x=0.37, max_y=0.87),
            "pivot": Point(x=0.25, y=0.75),
        }
    )
    return [chassis, front, rear]


@pytest.fixture
def car_png() -> str:
    return CAR_PNG


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig()


@pytest.fixture
def fake_service() -> FakeReasoningService:
    return FakeReasoningService()
