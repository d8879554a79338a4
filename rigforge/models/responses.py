"""API response models."""

from __future__ import annotations

from pydantic import BaseModel, Field

from rigforge.models.atlas import AtlasLayout
from rigforge.models.hierarchy import HierarchyNode, HierarchyReport, ValidationIssue
from rigforge.models.record import (
    CallLogEntry,
    PipelineRecord,
    RefinementTrace,
    Stage,
    StageStatus,
    UnitError,
)


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    llm_configured: bool = False
    sessions: int = 0


class PackResponse(BaseModel):
    layout: AtlasLayout
    correspondence: str = ""
    layout_template: str | None = None


class ValidateResponse(BaseModel):
    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)
    roots: list[str] = Field(default_factory=list)
    tree: list[HierarchyNode] = Field(default_factory=list)

    @classmethod
    def from_report(cls, report: HierarchyReport) -> ValidateResponse:
        return cls(is_valid=report.is_valid, issues=report.issues, roots=report.roots, tree=report.tree)


class SessionResponse(BaseModel):
    id: str
    stage: Stage
    status: StageStatus
    image_width: int | None = None
    image_height: int | None = None
    record: PipelineRecord


class UnitEventsResponse(BaseModel):
    unit_id: str
    trace: RefinementTrace | None = None
    error: UnitError | None = None
    calls: list[CallLogEntry] = Field(default_factory=list)
