"""Part models — one candidate unit as it moves Discovery → Extraction → Assembly → Atlas."""

from __future__ import annotations

import enum

from pydantic import BaseModel, ConfigDict, Field

from rigforge.models.geometry import BoundingBox, Point, Shape


class TypeHint(str, enum.Enum):
    WHEEL = "wheel"
    LIMB = "limb"
    BODY = "body"
    PISTON = "piston"
    JOINT = "joint"
    DECORATION = "decoration"
    OTHER = "other"


class ExtractionStrategy(str, enum.Enum):
    PRIMITIVE_FIT = "primitive_fit"
    MASK_SEGMENTATION = "mask_segmentation"


class MotionClass(str, enum.Enum):
    ROTATION = "rotation"
    SLIDING = "sliding"
    FIXED = "fixed"
    ELASTIC = "elastic"


class DiscoveryUnit(BaseModel):
    """A candidate part proposed by Discovery."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    anchor_point: Point
    rough_bbox: BoundingBox
    type_hint: TypeHint = TypeHint.OTHER
    extraction_strategy: ExtractionStrategy = ExtractionStrategy.PRIMITIVE_FIT


class ExtractionResult(BaseModel):
    """Solved geometry for one unit."""

    model_config = ConfigDict(frozen=True)

    id: str
    shape: Shape
    bbox: BoundingBox
    amodal_completed: bool = False
    confidence: float = Field(ge=0.0, le=1.0)


class AssemblyResult(ExtractionResult):
    """Final part: geometry plus its place in the rig."""

    display_name: str = ""
    type_hint: TypeHint = TypeHint.OTHER
    parent_id: str | None = None
    pivot: Point
    motion_class: MotionClass = MotionClass.FIXED


class AtlasRect(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: int
    y: int
    w: int
    h: int

    def intersects(self, other: AtlasRect) -> bool:
        return (
            self.x < other.x + other.w
            and self.x + self.w > other.x
            and self.y < other.y + other.h
            and self.y + self.h > other.y
        )

    def as_list(self) -> list[int]:
        return [self.x, self.y, self.w, self.h]


class PackedPart(AssemblyResult):
    atlas_rect: AtlasRect
