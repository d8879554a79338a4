"""JSON schemas for each stage's response payload.

Sent alongside the prompt so the model knows the exact shape expected; the
engine still normalizes whatever comes back.
"""

from __future__ import annotations

from typing import Any

_NUMBER = {"type": "number"}
_BBOX = {
    "type": "array",
    "items": _NUMBER,
    "minItems": 4,
    "maxItems": 4,
    "description": "[min_x, min_y, max_x, max_y] relative 0-1",
}

DISCOVERY_SCHEMA: dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "id": {"type": "string"},
            "name": {"type": "string"},
            "visual_anchor": {
                "type": "array",
                "items": _NUMBER,
                "minItems": 2,
                "maxItems": 2,
                "description": "[x, y] relative 0-1, inside the part",
            },
            "rough_bbox": _BBOX,
            "type_hint": {
                "type": "string",
                "enum": ["WHEEL", "LIMB", "BODY", "PISTON", "JOINT", "DECORATION", "OTHER"],
            },
            "extraction_strategy": {
                "type": "string",
                "enum": ["primitive_fit", "mask_segmentation"],
            },
        },
        "required": ["id", "name", "visual_anchor", "type_hint"],
    },
}

SHAPE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "type": {"type": "string", "enum": ["circle", "rect", "ellipse", "path"]},
        "cx": _NUMBER,
        "cy": _NUMBER,
        "r": _NUMBER,
        "x": _NUMBER,
        "y": _NUMBER,
        "width": _NUMBER,
        "height": _NUMBER,
        "rx": _NUMBER,
        "ry": _NUMBER,
        "d": {"type": "string"},
    },
    "required": ["type"],
}

EXTRACTION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": {"type": "string"},
        "shape": SHAPE_SCHEMA,
        "bbox": _BBOX,
        "amodal_completed": {"type": "boolean"},
        "confidence": _NUMBER,
    },
    "required": ["id", "shape", "bbox", "amodal_completed", "confidence"],
}

CRITIQUE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "verdict": {"type": "string", "enum": ["acceptable", "needs_improvement"]},
        "feedback": {"type": "string"},
    },
    "required": ["verdict", "feedback"],
}

ASSEMBLY_SCHEMA: dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "id": {"type": "string"},
            "name": {"type": "string"},
            "parentId": {"type": ["string", "null"]},
            "pivot": {
                "type": "object",
                "properties": {"x": _NUMBER, "y": _NUMBER},
                "required": ["x", "y"],
            },
            "movementType": {
                "type": "string",
                "enum": ["ROTATION", "SLIDING", "FIXED", "ELASTIC"],
            },
        },
        "required": ["id", "name", "parentId", "pivot", "movementType"],
    },
}
