"""Prompt templates per stage, fresh and conversational variants."""

from __future__ import annotations

import json
from collections.abc import Sequence

from rigforge.models.parts import DiscoveryUnit, ExtractionResult
from rigforge.models.record import ConversationalInput, StageInput

_COORDINATES = """IMPORTANT: Use RELATIVE coordinates (0.0 to 1.0) where 0.0 is top/left and 1.0 is bottom/right."""

_PART_DEFINITION = """Definition of a "Part":
A part is a group of visual elements that moves as a single rigid unit.
- If several objects move together (a rider and their saddle, a wheel and its hubcap), they are ONE part.
- Ignore internal seams, bolts or colour changes unless they mark a mechanical joint."""

_MANIFEST_FIELDS = """For each part, provide:
1. id: unique snake_case identifier (e.g. "rear_wheel", "main_chassis")
2. name: human-readable display name
3. visual_anchor: [x, y], a point that falls INSIDE the main mass of this part
4. rough_bbox: [min_x, min_y, max_x, max_y], a loose box around the part
5. type_hint: one of [WHEEL, LIMB, BODY, PISTON, JOINT, DECORATION, OTHER]
6. extraction_strategy: "primitive_fit" when a circle / rect / ellipse describes the part well,
   "mask_segmentation" for irregular outlines"""

_DISCOVERY_TEMPLATE = """Role: You are a senior 2D rigger specialising in kinematic mechanics.
Task: Identify the main rigid bodies (kinematic groups) in this image.

""" + _COORDINATES + """

""" + _PART_DEFINITION + """

""" + _MANIFEST_FIELDS + """

Rules:
- Prefer a minimal set of functional parts over detailed separation.
- Group static attachments (stickers, armour plates, handles) into their parent body.

Respond with a JSON array only."""

_DISCOVERY_RETRY_TEMPLATE = """Role: You are a senior 2D rigger refining an earlier breakdown of this image into rigid bodies.

Your previous analysis:
{prior_output}

{feedback}

MERGE parts that move together:
- If part A is bolted, welded or stuck to part B and cannot move independently, they are ONE part.
- Do not separate hubcaps from wheels, decorations from the body, or screws and highlights from anything.

""" + _COORDINATES + """

""" + _MANIFEST_FIELDS + """

Respond with the UPDATED JSON array only."""

_DEFAULT_DISCOVERY_FEEDBACK = "The previous breakdown had too many unnecessary pieces."

_SHAPE_OPTIONS = """Fit an SVG primitive to this part's outline:
   - circle: {{"type": "circle", "cx", "cy", "r"}}
   - rect: {{"type": "rect", "x", "y", "width", "height", "rx"?}}
   - ellipse: {{"type": "ellipse", "cx", "cy", "rx", "ry"}}
   - path: {{"type": "path", "d": "..."}} for irregular outlines, absolute SVG path commands"""

_EXTRACTION_TEMPLATE = """Role: You are a geometry worker reconstructing a single part.
Focus area: the part "{name}" (id: {id}) located near relative coordinates [{anchor_x:.3f}, {anchor_y:.3f}],
roughly inside [{rough_bbox}].
Part type: {type_hint}

""" + _COORDINATES + """

Task:
1. IGNORE occluding objects; imagine this part is isolated and complete the hidden outline.
2. """ + _SHAPE_OPTIONS + """
3. Provide the tight bounding box [min_x, min_y, max_x, max_y].
4. Set amodal_completed to true if you reconstructed hidden or occluded regions.
5. Give a confidence score between 0 and 1.

Prefer simple primitives when they fit well; use path only for irregular shapes.
Respond with a JSON object only."""

_EXTRACTION_REVISION = """

Your previous candidate for this part:
{prior_output}

A reviewer compared that candidate (drawn in magenta over the source in the second image) with the part:
"{feedback}"

Correct the candidate so it follows the visible edges of the part."""

_DEFAULT_EXTRACTION_FEEDBACK = "Re-check the outline against the image and tighten the fit."

_CRITIQUE_TEMPLATE = """Role: You are a strict reviewer of vector tracings.
The image shows the source with a candidate outline for the part "{name}" (id: {id}, type: {type_hint})
drawn over it in magenta.

Candidate:
{candidate}

Decide whether the outline covers the whole part (including any occluded area that was completed)
without spilling onto neighbouring parts.
- verdict: "acceptable" if it is good enough to cut the part out, otherwise "needs_improvement"
- feedback: one or two concrete sentences about what to move, grow or shrink

Respond with a JSON object only."""

_ASSEMBLY_TEMPLATE = """Role: You are the rigging architect assembling the final rig.

Parts with their extracted geometry (all coordinates are 0-1 relative):
{geometry_summary}

Task:
1. BUILD HIERARCHY: assign parentId to each part.
   - Larger body parts are usually parents of smaller attached parts.
   - Use null for root parts (main body, chassis).
   - Parts attach to overlapping or adjacent larger parts.
2. DEFINE PIVOTS: assign pivot {{"x", "y"}} for each part.
   - Wheels and circles: pivot at the geometric centre.
   - Limbs: pivot at the joint or attachment point.
3. ASSIGN MOVEMENT: one of [ROTATION, SLIDING, FIXED, ELASTIC].
   - ROTATION: wheels, arms, rotating joints
   - SLIDING: pistons, sliding mechanisms
   - FIXED: decorations, static parts
   - ELASTIC: flexible or deformable parts

Return every part listed above, as a JSON array only."""

_ASSEMBLY_RETRY_TEMPLATE = """Role: You are the rigging architect revising an earlier rig.

Parts with their extracted geometry (all coordinates are 0-1 relative):
{geometry_summary}

Your previous rigging:
{prior_output}

{feedback}

Provide an UPDATED rigging addressing the feedback:
1. BUILD HIERARCHY: parentId (null for roots)
2. DEFINE PIVOTS: {{"x", "y"}} at joints or centres
3. ASSIGN MOVEMENT: [ROTATION, SLIDING, FIXED, ELASTIC]

Return every part listed above, as a JSON array only."""

_DEFAULT_ASSEMBLY_FEEDBACK = "Please re-analyze the hierarchy and rigging."


def _feedback_line(stage_input: ConversationalInput, default: str) -> str:
    if stage_input.feedback:
        return f'User feedback: "{stage_input.feedback}"'
    return default


def _fmt_box(values: Sequence[float]) -> str:
    return ", ".join(f"{v:.3f}" for v in values)


def discovery_prompt(stage_input: StageInput) -> str:
    if isinstance(stage_input, ConversationalInput):
        return _DISCOVERY_RETRY_TEMPLATE.format(
            prior_output=stage_input.prior_output,
            feedback=_feedback_line(stage_input, _DEFAULT_DISCOVERY_FEEDBACK),
        )
    return _DISCOVERY_TEMPLATE


def extraction_prompt(unit: DiscoveryUnit, stage_input: StageInput) -> str:
    prompt = _EXTRACTION_TEMPLATE.format(
        name=unit.display_name,
        id=unit.id,
        anchor_x=unit.anchor_point.x,
        anchor_y=unit.anchor_point.y,
        rough_bbox=_fmt_box(unit.rough_bbox.as_list()),
        type_hint=unit.type_hint.value.upper(),
    )
    if isinstance(stage_input, ConversationalInput):
        prompt += _EXTRACTION_REVISION.format(
            prior_output=stage_input.prior_output,
            feedback=stage_input.feedback or _DEFAULT_EXTRACTION_FEEDBACK,
        )
    return prompt


def critique_prompt(unit: DiscoveryUnit, candidate: ExtractionResult) -> str:
    return _CRITIQUE_TEMPLATE.format(
        name=unit.display_name,
        id=unit.id,
        type_hint=unit.type_hint.value.upper(),
        candidate=candidate.model_dump_json(),
    )


def geometry_summary(units: Sequence[DiscoveryUnit], results: Sequence[ExtractionResult]) -> str:
    """One line per extracted part: name, id, shape kind, bbox, type hint."""
    by_id = {u.id: u for u in units}
    lines = []
    for r in results:
        unit = by_id.get(r.id)
        name = unit.display_name if unit else r.id
        hint = unit.type_hint.value.upper() if unit else "OTHER"
        lines.append(
            f"- {name} ({r.id}): type={r.shape.kind}, bbox=[{_fmt_box(r.bbox.as_list())}], type_hint={hint}"
        )
    return "\n".join(lines)


def assembly_prompt(
    units: Sequence[DiscoveryUnit],
    results: Sequence[ExtractionResult],
    stage_input: StageInput,
) -> str:
    summary = geometry_summary(units, results)
    if isinstance(stage_input, ConversationalInput):
        return _ASSEMBLY_RETRY_TEMPLATE.format(
            geometry_summary=summary,
            prior_output=stage_input.prior_output,
            feedback=_feedback_line(stage_input, _DEFAULT_ASSEMBLY_FEEDBACK),
        )
    return _ASSEMBLY_TEMPLATE.format(geometry_summary=summary)


def dump_payload(value: object) -> str:
    """Compact JSON text of a prior stage output, for conversational retries."""
    return json.dumps(value, separators=(",", ":"))
