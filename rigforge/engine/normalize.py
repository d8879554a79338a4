"""Normalize parsed reasoning payloads into the closed per-stage model types.

Every function here takes the JSON value decoded from a service response and
either returns validated, clamped models or raises ``ServiceError``. Out of
range coordinates are clamped, never rejected; missing required fields and
unknown enumerations are rejected.
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Sequence

from pydantic import BaseModel, ConfigDict

from rigforge.engine.errors import ServiceError
from rigforge.engine.geometry import (
    box_around,
    clamp_bbox,
    clamp_point,
    clamp_shape,
    clamp_unit,
    expand_to_include,
    rect_from_bbox,
    shape_bounds,
)
from rigforge.engine.outline import parse_path_data
from rigforge.models.geometry import (
    BoundingBox,
    CircleShape,
    EllipseShape,
    Point,
    RectShape,
    Shape,
)
from rigforge.models.parts import (
    AssemblyResult,
    DiscoveryUnit,
    ExtractionResult,
    ExtractionStrategy,
    MotionClass,
    TypeHint,
)

logger = logging.getLogger(__name__)

# Half extent of the box synthesized around an anchor when no rough box is given
DEFAULT_ROUGH_EXTENT = 0.1

_MOTION_ALIASES = {
    "rotation": MotionClass.ROTATION,
    "rotate": MotionClass.ROTATION,
    "sliding": MotionClass.SLIDING,
    "slide": MotionClass.SLIDING,
    "translation": MotionClass.SLIDING,
    "translation_x": MotionClass.SLIDING,
    "translation_y": MotionClass.SLIDING,
    "fixed": MotionClass.FIXED,
    "static": MotionClass.FIXED,
    "elastic": MotionClass.ELASTIC,
    "scale_pulse": MotionClass.ELASTIC,
}

_NULL_PARENTS = {"", "null", "none"}


class Critique(BaseModel):
    """Binary verdict on a rendered candidate, plus free-text feedback."""

    model_config = ConfigDict(frozen=True)

    verdict: Literal["acceptable", "needs_improvement"]
    feedback: str = ""

    @property
    def acceptable(self) -> bool:
        return self.verdict == "acceptable"


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------


def _number(value: Any, field: str, stage: str, unit_id: str | None = None) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ServiceError(f"Field {field!r} must be a number, got {value!r}", stage, unit_id)
    return float(value)


def _point(value: Any, field: str, stage: str, unit_id: str | None = None) -> Point:
    """Accept ``[x, y]`` or ``{"x": .., "y": ..}``."""
    if isinstance(value, dict):
        if "x" not in value or "y" not in value:
            raise ServiceError(f"Field {field!r} needs x and y", stage, unit_id)
        return Point(
            x=_number(value["x"], f"{field}.x", stage, unit_id),
            y=_number(value["y"], f"{field}.y", stage, unit_id),
        )
    if isinstance(value, (list, tuple)) and len(value) >= 2:
        return Point(
            x=_number(value[0], f"{field}[0]", stage, unit_id),
            y=_number(value[1], f"{field}[1]", stage, unit_id),
        )
    raise ServiceError(f"Field {field!r} must be a point, got {value!r}", stage, unit_id)


def _bbox_or_none(value: Any) -> BoundingBox | None:
    """``[min_x, min_y, max_x, max_y]`` → clamped box, or None if unusable."""
    if not isinstance(value, (list, tuple)) or len(value) != 4:
        return None
    if any(isinstance(v, bool) or not isinstance(v, (int, float)) for v in value):
        return None
    box = clamp_bbox(BoundingBox.from_list([float(v) for v in value]))
    return box if box.is_well_formed else None


def _entries(payload: Any, stage: str) -> list[Any]:
    """Stage payloads are arrays; a ``{"parts": [...]}`` wrapper is tolerated."""
    if isinstance(payload, dict) and isinstance(payload.get("parts"), list):
        payload = payload["parts"]
    if not isinstance(payload, list):
        raise ServiceError(f"Expected a JSON array, got {type(payload).__name__}", stage)
    return payload


def _first(entry: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in entry:
            return entry[key]
    return None


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def _type_hint(value: Any) -> TypeHint:
    try:
        return TypeHint(str(value).strip().lower())
    except ValueError:
        return TypeHint.OTHER


def _strategy(value: Any) -> ExtractionStrategy:
    try:
        return ExtractionStrategy(str(value).strip().lower())
    except ValueError:
        return ExtractionStrategy.PRIMITIVE_FIT


def normalize_manifest(payload: Any) -> list[DiscoveryUnit]:
    """Discovery payload → manifest with unique ids and anchors inside their boxes."""
    stage = "discovery"
    entries = _entries(payload, stage)
    if not entries:
        raise ServiceError("Discovery returned no parts", stage)

    # Renamed duplicates must not take an id another entry uses verbatim
    reserved = {
        e["id"].strip() for e in entries if isinstance(e, dict) and isinstance(e.get("id"), str)
    }
    units: list[DiscoveryUnit] = []
    seen: dict[str, int] = {}
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ServiceError(f"Manifest entry {i} is not an object", stage)

        raw_id = entry.get("id")
        if not isinstance(raw_id, str) or not raw_id.strip():
            raise ServiceError(f"Manifest entry {i} has no id", stage)
        unit_id = raw_id.strip()
        if unit_id in seen:
            suffix = seen[unit_id] + 1
            while f"{unit_id}_{suffix}" in seen or f"{unit_id}_{suffix}" in reserved:
                suffix += 1
            seen[unit_id] = suffix
            renamed = f"{unit_id}_{suffix}"
            logger.warning("Duplicate manifest id %s renamed to %s", unit_id, renamed)
            unit_id = renamed
        seen.setdefault(unit_id, 1)

        raw_anchor = _first(entry, "visual_anchor", "anchor_point", "anchor")
        if raw_anchor is None:
            raise ServiceError(f"Part {unit_id!r} has no anchor point", stage, unit_id)
        anchor = clamp_point(_point(raw_anchor, "visual_anchor", stage, unit_id))

        rough = _bbox_or_none(_first(entry, "rough_bbox", "bbox"))
        if rough is None:
            rough = box_around(anchor, DEFAULT_ROUGH_EXTENT)
        elif not rough.contains(anchor):
            rough = expand_to_include(rough, anchor)

        name = _first(entry, "name", "display_name")
        units.append(
            DiscoveryUnit(
                id=unit_id,
                display_name=str(name) if name else unit_id,
                anchor_point=anchor,
                rough_bbox=rough,
                type_hint=_type_hint(entry.get("type_hint")),
                extraction_strategy=_strategy(entry.get("extraction_strategy")),
            )
        )

    return units


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def _shape(raw: dict[str, Any], fallback: BoundingBox | None, unit_id: str) -> Shape:
    stage = "extraction"
    kind = str(raw.get("type", "")).strip().lower()
    num = lambda key: _number(raw.get(key), f"shape.{key}", stage, unit_id)  # noqa: E731

    if kind == "circle":
        return CircleShape(center=Point(x=num("cx"), y=num("cy")), radius=abs(num("r")))
    if kind == "rect":
        rx = raw.get("rx")
        return RectShape(
            origin=Point(x=num("x"), y=num("y")),
            size=Point(x=abs(num("width")), y=abs(num("height"))),
            corner_radius=None if rx is None else abs(_number(rx, "shape.rx", stage, unit_id)),
        )
    if kind == "ellipse":
        return EllipseShape(
            center=Point(x=num("cx"), y=num("cy")),
            radii=Point(x=abs(num("rx")), y=abs(num("ry"))),
        )
    if kind == "path":
        d = raw.get("d")
        if not isinstance(d, str) or not d.strip():
            raise ServiceError("Path shape has no path data", stage, unit_id)
        try:
            return parse_path_data(d)
        except ValueError as e:
            raise ServiceError(str(e), stage, unit_id) from e

    if fallback is not None:
        logger.warning("Unit %s: unknown shape type %r, using its bbox as a rect", unit_id, kind)
        return rect_from_bbox(fallback)
    raise ServiceError(f"Unknown shape type {kind!r} and no usable bbox", stage, unit_id)


def _amodal(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("", "false", "no", "0")
    return bool(value)


def normalize_extraction(payload: Any, unit: DiscoveryUnit) -> ExtractionResult:
    """Extraction payload → result for ``unit``; the unit id always wins."""
    stage = "extraction"
    if not isinstance(payload, dict):
        raise ServiceError("Expected a JSON object", stage, unit.id)
    raw_shape = payload.get("shape")
    if not isinstance(raw_shape, dict):
        raise ServiceError("Response has no shape object", stage, unit.id)

    bbox = _bbox_or_none(payload.get("bbox"))
    shape = clamp_shape(_shape(raw_shape, bbox, unit.id))

    if bbox is None:
        derived = shape_bounds(shape)
        bbox = clamp_bbox(derived) if derived is not None else None
        if bbox is None or not bbox.is_well_formed:
            raise ServiceError("Could not derive a well-formed bbox", stage, unit.id)

    if "confidence" not in payload:
        raise ServiceError("Response has no confidence", stage, unit.id)
    confidence = clamp_unit(_number(payload["confidence"], "confidence", stage, unit.id))

    return ExtractionResult(
        id=unit.id,
        shape=shape,
        bbox=bbox,
        amodal_completed=_amodal(payload.get("amodal_completed", False)),
        confidence=confidence,
    )


def normalize_critique(payload: Any, unit_id: str) -> Critique:
    stage = "extraction"
    if not isinstance(payload, dict):
        raise ServiceError("Critique response is not an object", stage, unit_id)
    verdict = str(payload.get("verdict", "")).strip().lower().replace("-", "_").replace(" ", "_")
    if verdict not in ("acceptable", "needs_improvement"):
        raise ServiceError(f"Unknown critique verdict {payload.get('verdict')!r}", stage, unit_id)
    feedback = payload.get("feedback") or ""
    return Critique(verdict=verdict, feedback=str(feedback))


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


def _motion(value: Any, unit_id: str) -> MotionClass:
    key = str(value or "").strip().lower()
    if key not in _MOTION_ALIASES:
        raise ServiceError(f"Unknown motion class {value!r}", "assembly", unit_id)
    return _MOTION_ALIASES[key]


def _parent(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return None if text.lower() in _NULL_PARENTS else text


def normalize_assembly(
    payload: Any,
    units: Sequence[DiscoveryUnit],
    results: Sequence[ExtractionResult],
) -> list[AssemblyResult]:
    """Merge rigging entries with extracted geometry and manifest metadata.

    Rigging for an unknown id is a ``ServiceError``. Geometry the rigging did
    not mention is kept as a fixed root pivoting on its bbox centre.
    """
    stage = "assembly"
    entries = _entries(payload, stage)
    geometry = {r.id: r for r in results}
    manifest = {u.id: u for u in units}

    parts: list[AssemblyResult] = []
    rigged: set[str] = set()
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ServiceError(f"Rigging entry {i} is not an object", stage)
        part_id = str(entry.get("id", "")).strip()
        geo = geometry.get(part_id)
        if geo is None:
            raise ServiceError(f"Missing geometry for part {part_id!r}", stage, part_id or None)
        if part_id in rigged:
            logger.warning("Duplicate rigging entry for %s ignored", part_id)
            continue
        rigged.add(part_id)

        raw_pivot = entry.get("pivot")
        if raw_pivot is None:
            raise ServiceError(f"Part {part_id!r} has no pivot", stage, part_id)

        unit = manifest.get(part_id)
        name = entry.get("name") or (unit.display_name if unit else part_id)
        parts.append(
            AssemblyResult(
                **geo.model_dump(),
                display_name=str(name),
                type_hint=unit.type_hint if unit else TypeHint.OTHER,
                parent_id=_parent(_first(entry, "parentId", "parent_id")),
                pivot=clamp_point(_point(raw_pivot, "pivot", stage, part_id)),
                motion_class=_motion(_first(entry, "movementType", "motion_class"), part_id),
            )
        )

    for geo in results:
        if geo.id in rigged:
            continue
        logger.warning("No rigging returned for %s; keeping it as a fixed root", geo.id)
        unit = manifest.get(geo.id)
        parts.append(
            AssemblyResult(
                **geo.model_dump(),
                display_name=unit.display_name if unit else geo.id,
                type_hint=unit.type_hint if unit else TypeHint.OTHER,
                parent_id=None,
                pivot=geo.bbox.center,
                motion_class=MotionClass.FIXED,
            )
        )

    return parts
