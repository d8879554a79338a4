"""Pydantic data models shared by the engine and the API."""

from rigforge.models.atlas import AtlasLayout, PackingAlgorithm
from rigforge.models.geometry import (
    BoundingBox,
    CircleShape,
    ClosePath,
    CubicTo,
    EllipseShape,
    FreeformOutline,
    LineTo,
    MoveTo,
    Point,
    QuadTo,
    RectShape,
    Shape,
)
from rigforge.models.hierarchy import HierarchyNode, HierarchyReport, ValidationIssue
from rigforge.models.parts import (
    AssemblyResult,
    AtlasRect,
    DiscoveryUnit,
    ExtractionResult,
    ExtractionStrategy,
    MotionClass,
    PackedPart,
    TypeHint,
)
from rigforge.models.record import (
    CallLogEntry,
    ConversationalInput,
    FreshInput,
    PipelineEvent,
    PipelineRecord,
    RefinementEvent,
    RefinementTrace,
    RetryMode,
    Stage,
    StageInput,
    StageStatus,
    UnitError,
)

__all__ = [
    "AssemblyResult",
    "AtlasLayout",
    "AtlasRect",
    "BoundingBox",
    "CallLogEntry",
    "CircleShape",
    "ClosePath",
    "ConversationalInput",
    "CubicTo",
    "DiscoveryUnit",
    "EllipseShape",
    "ExtractionResult",
    "ExtractionStrategy",
    "FreeformOutline",
    "FreshInput",
    "HierarchyNode",
    "HierarchyReport",
    "LineTo",
    "MotionClass",
    "MoveTo",
    "PackedPart",
    "PackingAlgorithm",
    "PipelineEvent",
    "PipelineRecord",
    "Point",
    "QuadTo",
    "RectShape",
    "RefinementEvent",
    "RefinementTrace",
    "RetryMode",
    "Shape",
    "Stage",
    "StageInput",
    "StageStatus",
    "TypeHint",
    "UnitError",
    "ValidationIssue",
]
