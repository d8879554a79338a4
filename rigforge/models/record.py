"""Pipeline record — the single aggregate owned by the orchestrator."""

from __future__ import annotations

import enum
import time
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from rigforge.models.geometry import Shape
from rigforge.models.parts import AssemblyResult, DiscoveryUnit, ExtractionResult


class Stage(str, enum.Enum):
    IDLE = "idle"
    DISCOVERY = "discovery"
    EXTRACTION = "extraction"
    ASSEMBLY = "assembly"
    COMPLETE = "complete"


class StageStatus(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    RETRYING = "retrying"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    FAILED = "failed"
    DONE = "done"


class RetryMode(str, enum.Enum):
    FRESH = "fresh"
    CONVERSATIONAL = "conversational"


# ---------------------------------------------------------------------------
# Stage inputs: the two variants every stage function accepts
# ---------------------------------------------------------------------------


class FreshInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: Literal["fresh"] = "fresh"


class ConversationalInput(BaseModel):
    """Prior output (JSON text) plus optional caller feedback, replayed as correction context."""

    model_config = ConfigDict(frozen=True)

    mode: Literal["conversational"] = "conversational"
    prior_output: str
    feedback: str | None = None
    composite_image: str | None = None  # base64 PNG of the prior output overlaid on the source


StageInput = Annotated[Union[FreshInput, ConversationalInput], Field(discriminator="mode")]


# ---------------------------------------------------------------------------
# Log + history entries
# ---------------------------------------------------------------------------


class CallLogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    stage: str
    unit_id: str | None = None
    prompt_digest: str
    response_digest: str | None = None
    duration_ms: float = 0.0
    ok: bool = True
    timestamp: float = Field(default_factory=time.time)


class UnitError(BaseModel):
    id: str
    message: str
    retry_count: int = 0


class RefinementEvent(BaseModel):
    """One step of a unit's self-correction loop."""

    model_config = ConfigDict(frozen=True)

    round: int
    step: Literal["propose", "critique"]
    prompt_digest: str | None = None
    verdict: str | None = None
    feedback: str | None = None
    shape: Shape | None = None


class RefinementTrace(BaseModel):
    model_config = ConfigDict(frozen=True)

    unit_id: str
    rounds: int = 0
    converged: bool = False
    events: list[RefinementEvent] = Field(default_factory=list)


class PipelineRecord(BaseModel):
    """Everything a pipeline run has produced so far.

    Mutated only by the orchestrator; observers receive deep copies.
    """

    source_digest: str | None = None
    discovery: list[DiscoveryUnit] | None = None
    extraction: list[ExtractionResult] = Field(default_factory=list)
    extraction_errors: list[UnitError] = Field(default_factory=list)
    refinements: dict[str, RefinementTrace] = Field(default_factory=dict)
    assembly: list[AssemblyResult] | None = None
    call_log: list[CallLogEntry] = Field(default_factory=list)

    def get_unit(self, unit_id: str) -> DiscoveryUnit | None:
        for unit in self.discovery or []:
            if unit.id == unit_id:
                return unit
        return None

    def get_result(self, unit_id: str) -> ExtractionResult | None:
        for result in self.extraction:
            if result.id == unit_id:
                return result
        return None

    def get_error(self, unit_id: str) -> UnitError | None:
        for err in self.extraction_errors:
            if err.id == unit_id:
                return err
        return None


class PipelineEvent(BaseModel):
    """Progress / log notification handed to orchestrator observers."""

    kind: Literal["stage", "progress", "stream", "error", "record"]
    stage: Stage
    message: str = ""
    unit_id: str | None = None
    record: PipelineRecord | None = None
