"""Engine exception hierarchy.

Structural problems (cycles, dangling parents) and geometry warnings are never
raised; the hierarchy validator returns them as ``ValidationIssue`` data.
"""

from __future__ import annotations


class RigforgeError(Exception):
    """Base class for all engine errors."""


class ServiceError(RigforgeError):
    """An external call produced no payload, or a payload that failed to parse."""

    def __init__(self, message: str, stage: str = "", unit_id: str | None = None) -> None:
        super().__init__(message)
        self.stage = stage
        self.unit_id = unit_id


class PipelineStateError(RigforgeError):
    """A transition was requested that the current pipeline state does not allow."""


class PackingOverflow(RigforgeError):
    """The packer could not place every part inside the canvas without overlap."""

    def __init__(self, message: str, part_ids: list[str] | None = None) -> None:
        super().__init__(message)
        self.part_ids = part_ids or []
