"""Hierarchy / kinematics validator.

Pure function over a part list: builds the parent → children index, derives the
roots and the display tree, and reports structural problems as
``ValidationIssue`` data. Nothing here raises on bad input and the input list is
never mutated, so it is safe to call on stale data for display.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from rigforge.engine.geometry import pivot_offset_ratio
from rigforge.models.hierarchy import HierarchyNode, HierarchyReport, ValidationIssue
from rigforge.models.parts import AssemblyResult, MotionClass

logger = logging.getLogger(__name__)

# Rotation pivots farther than this fraction of the bbox diagonal from the
# bbox centre are flagged as plausibly mis-specified.
_ROTATION_PIVOT_RATIO = 0.6

_UNVISITED, _ON_STACK, _DONE = 0, 1, 2


def _error(part_id: str, message: str) -> ValidationIssue:
    return ValidationIssue(severity="error", part_id=part_id, message=message)


def _warning(part_id: str, message: str) -> ValidationIssue:
    return ValidationIssue(severity="warning", part_id=part_id, message=message)


def build_children_index(parts: Sequence[AssemblyResult]) -> dict[str | None, list[str]]:
    """parent_id → child ids, in input order. Roots are under the ``None`` key."""
    index: dict[str | None, list[str]] = {}
    for p in parts:
        index.setdefault(p.parent_id, []).append(p.id)
    return index


def find_cycles(parts: Sequence[AssemblyResult]) -> list[list[str]]:
    """Every parent cycle, each as the ordered list of part ids on it.

    Depth-first walk up ``parent_id`` edges with an explicit recursion stack.
    Parts that merely lead into a cycle are not reported as members.
    """
    by_id: dict[str, AssemblyResult] = {}
    for p in parts:
        by_id.setdefault(p.id, p)

    state: dict[str, int] = {pid: _UNVISITED for pid in by_id}
    cycles: list[list[str]] = []

    for start in by_id:
        if state[start] != _UNVISITED:
            continue
        stack: list[str] = []
        current: str | None = start
        while current is not None and current in by_id:
            s = state[current]
            if s == _DONE:
                break
            if s == _ON_STACK:
                cycles.append(stack[stack.index(current):])
                break
            state[current] = _ON_STACK
            stack.append(current)
            current = by_id[current].parent_id
        for pid in stack:
            state[pid] = _DONE

    return cycles


def _build_tree(
    parts_by_id: dict[str, AssemblyResult],
    children: dict[str | None, list[str]],
    roots: list[str],
) -> list[HierarchyNode]:
    placed: set[str] = set()

    def build(pid: str, depth: int) -> HierarchyNode:
        placed.add(pid)
        part = parts_by_id[pid]
        node = HierarchyNode(
            part_id=pid,
            display_name=part.display_name,
            motion_class=part.motion_class,
            depth=depth,
        )
        for child in children.get(pid, []):
            if child not in placed and child != pid:
                node.children.append(build(child, depth + 1))
        return node

    return [build(r, 0) for r in roots if r not in placed]


def validate_hierarchy(parts: Sequence[AssemblyResult]) -> HierarchyReport:
    """Check references, roots, cycles, boxes and pivots. Returns issues + tree."""
    issues: list[ValidationIssue] = []
    parts_by_id: dict[str, AssemblyResult] = {}

    for p in parts:
        if p.id in parts_by_id:
            issues.append(_error(p.id, f'Duplicate part id "{p.id}"'))
            continue
        parts_by_id[p.id] = p

    # Parent references + roots
    roots: list[str] = []
    for p in parts_by_id.values():
        if p.parent_id is None:
            roots.append(p.id)
        elif p.parent_id not in parts_by_id:
            issues.append(_error(p.id, f'Parent "{p.parent_id}" does not exist'))

    if parts_by_id and not roots:
        first = next(iter(parts_by_id))
        issues.append(_error(first, "No root part found (at least one part must have no parent)"))
    if len(roots) > 1:
        issues.append(
            _warning(
                roots[0],
                f"Multiple root parts found ({len(roots)}). Consider if this is intentional.",
            )
        )

    # Cycles
    for cycle in find_cycles(list(parts_by_id.values())):
        chain = " -> ".join([*cycle, cycle[0]])
        for pid in cycle:
            issues.append(_error(pid, f'Circular dependency detected involving "{pid}" ({chain})'))

    # Boxes + pivots
    for p in parts_by_id.values():
        box = p.bbox
        if not box.is_well_formed:
            issues.append(_error(p.id, "Invalid bounding box: min >= max"))
        if not box.is_in_unit_range:
            issues.append(_warning(p.id, "Bounding box extends outside image bounds (values clamped)"))

        if not box.contains(p.pivot):
            issues.append(
                _warning(
                    p.id,
                    f"Pivot point ({p.pivot.x:.2f}, {p.pivot.y:.2f}) is outside bounding box",
                )
            )

        if p.motion_class is MotionClass.ROTATION and box.is_well_formed:
            if pivot_offset_ratio(p.pivot, box) > _ROTATION_PIVOT_RATIO:
                issues.append(
                    _warning(p.id, "Rotation pivot is far from part center - verify this is intentional")
                )

    children = build_children_index(list(parts_by_id.values()))
    tree = _build_tree(parts_by_id, children, roots)

    report = HierarchyReport(issues=issues, roots=roots, tree=tree)
    logger.debug(
        "Validated %d parts: %d error(s), %d warning(s)",
        len(parts),
        len(report.errors),
        len(report.warnings),
    )
    return report
