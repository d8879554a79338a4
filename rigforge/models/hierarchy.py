"""Validator output models."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from rigforge.models.parts import MotionClass


class ValidationIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    severity: Literal["error", "warning"]
    part_id: str
    message: str


class HierarchyNode(BaseModel):
    part_id: str
    display_name: str = ""
    motion_class: MotionClass = MotionClass.FIXED
    depth: int = 0
    children: list[HierarchyNode] = Field(default_factory=list)


class HierarchyReport(BaseModel):
    issues: list[ValidationIssue] = Field(default_factory=list)
    roots: list[str] = Field(default_factory=list)
    tree: list[HierarchyNode] = Field(default_factory=list)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == "error"]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == "warning"]

    @property
    def is_valid(self) -> bool:
        return not self.errors
