"""Pipeline orchestrator — the Discovery → Extraction → Assembly state machine.

The orchestrator owns the ``PipelineRecord`` and is the only thing that
mutates it. Stage output is applied as one replace-or-merge after the stage
call returns, then observers receive a deep-copied snapshot. A stage that
raises leaves the record as it was (the call log still gains its entries).
The orchestrator never advances past a stage the caller has not confirmed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from rigforge.engine.assembly import run_assembly_stage
from rigforge.engine.compositing import render_overlay
from rigforge.engine.config import PipelineConfig
from rigforge.engine.discovery import run_discovery_stage
from rigforge.engine.errors import PipelineStateError
from rigforge.engine.extraction import refine_unit, run_extraction_pool
from rigforge.engine.hierarchy import validate_hierarchy
from rigforge.engine.packing import pack_parts
from rigforge.engine.segmentation import SegmentationService
from rigforge.llm.client import ReasoningService
from rigforge.llm.prompts import dump_payload
from rigforge.models.atlas import AtlasLayout, PackingAlgorithm
from rigforge.models.hierarchy import HierarchyReport
from rigforge.models.parts import AssemblyResult, DiscoveryUnit, ExtractionResult
from rigforge.models.record import (
    ConversationalInput,
    FreshInput,
    PipelineEvent,
    PipelineRecord,
    RetryMode,
    Stage,
    StageInput,
    StageStatus,
    UnitError,
)
from rigforge.utils.imaging import decode_image, digest

logger = logging.getLogger(__name__)

EventCallback = Callable[[PipelineEvent], None]

# Statuses from which a stage's output may be confirmed
_CONFIRMABLE = (StageStatus.AWAITING_CONFIRMATION, StageStatus.FAILED)
_BUSY = (StageStatus.RUNNING, StageStatus.RETRYING)


class PipelineOrchestrator:
    """Drives one source image through the three stages.

    Usage::

        orch = PipelineOrchestrator(service)
        await orch.run_discovery(image_b64)
        await orch.confirm_discovery()   # runs Extraction
        await orch.confirm_extraction()  # runs Assembly
        orch.confirm_assembly()
        layout = orch.pack()
    """

    def __init__(
        self,
        service: ReasoningService,
        config: PipelineConfig | None = None,
        segmentation: SegmentationService | None = None,
    ) -> None:
        self.service = service
        self.config = config or PipelineConfig()
        self.segmentation = segmentation

        self.stage = Stage.IDLE
        self.status = StageStatus.IDLE
        self.record = PipelineRecord()
        self.image: str | None = None
        self.image_size: tuple[int, int] | None = None
        self._observers: list[EventCallback] = []

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register an observer; returns a function that unregisters it."""
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    def _emit(self, kind: str, message: str = "", unit_id: str | None = None, with_record: bool = False) -> None:
        event = PipelineEvent(
            kind=kind,
            stage=self.stage,
            message=message,
            unit_id=unit_id,
            record=self.snapshot() if with_record else None,
        )
        for callback in list(self._observers):
            try:
                callback(event)
            except Exception as e:
                logger.warning("Pipeline observer failed on %s event: %s", kind, e)

    def _enter(self, stage: Stage, status: StageStatus, message: str) -> None:
        self.stage = stage
        self.status = status
        self._emit("stage", message)

    def _fail(self, stage: Stage, err: Exception) -> None:
        self.stage = stage
        self.status = StageStatus.FAILED
        logger.warning("%s failed: %s", stage.value.capitalize(), err)
        self._emit("error", str(err), unit_id=getattr(err, "unit_id", None))

    def _on_chunk(self, chunk: str) -> None:
        self._emit("stream", chunk)

    def _on_progress(self, batch_index: int, batch_count: int, first: int, last: int, total: int) -> None:
        self._emit("progress", f"Processing batch {batch_index}/{batch_count} (units {first}-{last} of {total})")

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def snapshot(self) -> PipelineRecord:
        """Deep copy of the record; safe to hand to observers and callers."""
        return self.record.model_copy(deep=True)

    def _require_idle(self) -> None:
        if self.status in _BUSY:
            raise PipelineStateError(f"{self.stage.value} is still {self.status.value}")

    def _require_image(self) -> str:
        if self.image is None:
            raise PipelineStateError("No source image loaded; run discovery first")
        return self.image

    def _require_confirmable(self, stage: Stage) -> None:
        self._require_idle()
        if self.stage is not stage or self.status not in _CONFIRMABLE:
            raise PipelineStateError(
                f"Cannot confirm {stage.value}: pipeline is at {self.stage.value} ({self.status.value})"
            )

    def _require_discovery(self) -> list[DiscoveryUnit]:
        if not self.record.discovery:
            raise PipelineStateError("Discovery has not produced a manifest")
        return self.record.discovery

    def _require_extraction(self) -> list[ExtractionResult]:
        if not self.record.extraction:
            raise PipelineStateError("Extraction has not produced any geometry")
        return self.record.extraction

    def _require_assembly(self) -> list[AssemblyResult]:
        if self.record.assembly is None:
            raise PipelineStateError("Assembly has not produced a rig")
        return self.record.assembly

    @staticmethod
    def _stage_input(mode: RetryMode | str, prior_output: str | None, feedback: str | None) -> StageInput:
        """Conversational retries need prior output; without it they run fresh."""
        if RetryMode(mode) is RetryMode.CONVERSATIONAL and prior_output is not None:
            return ConversationalInput(prior_output=prior_output, feedback=feedback)
        return FreshInput()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def _discover(self, stage_input: StageInput, status: StageStatus) -> list[DiscoveryUnit]:
        image = self._require_image()
        self._enter(Stage.DISCOVERY, status, f"Discovery {status.value}")
        try:
            units = await run_discovery_stage(
                self.service, image, self.record.call_log, stage_input, self._on_chunk
            )
        except Exception as e:
            self._fail(Stage.DISCOVERY, e)
            raise

        self.record.discovery = units
        self.record.extraction = []
        self.record.extraction_errors = []
        self.record.refinements = {}
        self.record.assembly = None
        self.status = StageStatus.AWAITING_CONFIRMATION
        self._emit("record", f"Discovery found {len(units)} units", with_record=True)
        return units

    async def run_discovery(self, image: str) -> list[DiscoveryUnit]:
        """Start over on a new source image. Valid from any idle state."""
        self._require_idle()
        width, height = decode_image(image).size
        self.image = image
        self.image_size = (width, height)
        self.record = PipelineRecord(source_digest=digest(image))
        logger.info("New source image %dx%d (%s)", width, height, self.record.source_digest)
        return await self._discover(FreshInput(), StageStatus.RUNNING)

    async def retry_discovery(
        self, mode: RetryMode | str = RetryMode.FRESH, feedback: str | None = None
    ) -> list[DiscoveryUnit]:
        """Re-run Discovery; success invalidates extraction and assembly."""
        self._require_idle()
        self._require_image()
        prior = self.record.discovery
        prior_output = dump_payload([u.model_dump(mode="json") for u in prior]) if prior else None
        return await self._discover(self._stage_input(mode, prior_output, feedback), StageStatus.RETRYING)

    async def confirm_discovery(self) -> list[ExtractionResult]:
        """Accept the manifest and run Extraction over it."""
        self._require_confirmable(Stage.DISCOVERY)
        self._require_discovery()
        return await self._extract({}, StageStatus.RUNNING)

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    async def _extract(self, inputs: dict[str, StageInput], status: StageStatus) -> list[ExtractionResult]:
        image = self._require_image()
        units = self._require_discovery()
        self._enter(Stage.EXTRACTION, status, f"Extraction {status.value} for {len(units)} units")

        try:
            partition = await run_extraction_pool(
                self.service,
                image,
                units,
                self.record.call_log,
                self.config,
                inputs=inputs,
                segmentation=self.segmentation,
                on_progress=self._on_progress,
            )
        except Exception as e:
            self._fail(Stage.EXTRACTION, e)
            raise

        self.record.extraction = partition.results
        self.record.extraction_errors = partition.errors
        self.record.refinements = partition.traces
        self.record.assembly = None
        self.status = StageStatus.AWAITING_CONFIRMATION
        for err in partition.errors:
            self._emit("error", err.message, unit_id=err.id)
        self._emit(
            "record",
            f"Extraction: {len(partition.results)} ok, {len(partition.errors)} failed",
            with_record=True,
        )
        return partition.results

    def _unit_input(self, unit_id: str, mode: RetryMode | str, feedback: str | None) -> StageInput:
        prior = self.record.get_result(unit_id)
        if RetryMode(mode) is not RetryMode.CONVERSATIONAL or prior is None:
            return FreshInput()
        return ConversationalInput(
            prior_output=prior.model_dump_json(),
            feedback=feedback,
            composite_image=render_overlay(self._require_image(), prior.shape, prior.bbox),
        )

    async def retry_extraction(
        self, mode: RetryMode | str = RetryMode.FRESH, feedback: str | None = None
    ) -> list[ExtractionResult]:
        """Re-run the whole stage; invalidates assembly."""
        self._require_idle()
        if self.stage not in (Stage.EXTRACTION, Stage.ASSEMBLY, Stage.COMPLETE):
            raise PipelineStateError(f"Extraction retry needs confirmed discovery, pipeline is at {self.stage.value}")
        units = self._require_discovery()
        inputs = {u.id: self._unit_input(u.id, mode, feedback) for u in units}
        return await self._extract(inputs, StageStatus.RETRYING)

    async def retry_unit(
        self, unit_id: str, mode: RetryMode | str = RetryMode.FRESH, feedback: str | None = None
    ) -> ExtractionResult | None:
        """Re-run one unit, leaving every other unit untouched.

        Returns the new result, or None when the unit failed again (its error
        entry then carries the new message and an incremented retry count).
        """
        self._require_idle()
        if self.stage is not Stage.EXTRACTION:
            raise PipelineStateError(f"Unit retry needs the extraction stage, pipeline is at {self.stage.value}")
        image = self._require_image()
        unit = self.record.get_unit(unit_id)
        if unit is None:
            raise KeyError(unit_id)

        stage_input = self._unit_input(unit_id, mode, feedback)
        previous_status = self.status
        self.status = StageStatus.RETRYING
        self._emit("stage", f"Retrying unit {unit_id}", unit_id=unit_id)

        try:
            result, trace = await refine_unit(
                self.service,
                image,
                unit,
                self.record.call_log,
                self.config,
                stage_input,
                self.segmentation,
            )
        except Exception as e:
            message = str(e) or type(e).__name__
            err = self.record.get_error(unit_id)
            if err is None:
                err = UnitError(id=unit_id, message=message, retry_count=1)
                self.record.extraction_errors.append(err)
            else:
                err.retry_count += 1
                err.message = message
            self.status = previous_status
            logger.warning("Unit %s retry %d failed: %s", unit_id, err.retry_count, message)
            self._emit("error", message, unit_id=unit_id)
            self._emit("record", f"Unit {unit_id} failed", unit_id=unit_id, with_record=True)
            return None

        # Merge: replace or insert in manifest order, clear this unit's error only
        merged = {r.id: r for r in self.record.extraction}
        merged[unit_id] = result
        order = [u.id for u in self._require_discovery()]
        self.record.extraction = [merged[uid] for uid in order if uid in merged]
        self.record.extraction_errors = [e for e in self.record.extraction_errors if e.id != unit_id]
        self.record.refinements[unit_id] = trace
        self.status = StageStatus.AWAITING_CONFIRMATION
        self._emit("record", f"Unit {unit_id} extracted", unit_id=unit_id, with_record=True)
        return result

    async def confirm_extraction(self) -> list[AssemblyResult]:
        """Accept the geometry and run Assembly."""
        self._require_confirmable(Stage.EXTRACTION)
        self._require_extraction()
        return await self._assemble(FreshInput(), StageStatus.RUNNING)

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    async def _assemble(self, stage_input: StageInput, status: StageStatus) -> list[AssemblyResult]:
        image = self._require_image()
        units = self._require_discovery()
        results = self._require_extraction()
        self._enter(Stage.ASSEMBLY, status, f"Assembly {status.value}")
        try:
            parts = await run_assembly_stage(
                self.service, image, units, results, self.record.call_log, stage_input, self._on_chunk
            )
        except Exception as e:
            self._fail(Stage.ASSEMBLY, e)
            raise

        self.record.assembly = parts
        self.status = StageStatus.AWAITING_CONFIRMATION
        self._emit("record", f"Assembly rigged {len(parts)} parts", with_record=True)
        return parts

    async def retry_assembly(
        self, mode: RetryMode | str = RetryMode.FRESH, feedback: str | None = None
    ) -> list[AssemblyResult]:
        """Replace the assembly only; extraction is left as is."""
        self._require_idle()
        if self.stage not in (Stage.ASSEMBLY, Stage.COMPLETE):
            raise PipelineStateError(f"Assembly retry needs a rig, pipeline is at {self.stage.value}")
        prior = self.record.assembly
        prior_output = (
            dump_payload([p.model_dump(mode="json", exclude={"shape"}) for p in prior]) if prior else None
        )
        return await self._assemble(self._stage_input(mode, prior_output, feedback), StageStatus.RETRYING)

    def confirm_assembly(self) -> list[AssemblyResult]:
        self._require_confirmable(Stage.ASSEMBLY)
        parts = self._require_assembly()
        self._enter(Stage.COMPLETE, StageStatus.DONE, "Pipeline complete")
        return parts

    # ------------------------------------------------------------------
    # Downstream consumers
    # ------------------------------------------------------------------

    def validate(self) -> HierarchyReport:
        return validate_hierarchy(self._require_assembly())

    def pack(
        self,
        algorithm: PackingAlgorithm | str = PackingAlgorithm.MAXRECTS,
        canvas_size: int = 1024,
        image_size: tuple[int, int] | None = None,
        strict: bool = False,
    ) -> AtlasLayout:
        """Pack the rigged parts; sizes come from the source image unless given."""
        parts = self._require_assembly()
        size = image_size or self.image_size
        if size is None:
            raise PipelineStateError("Source image size unknown")
        return pack_parts(parts, size[0], size[1], canvas_size, algorithm, self.config, strict=strict)
