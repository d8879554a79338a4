"""Extraction — per-unit self-correction loop and the batched worker pool.

Each unit runs propose → composite → critique for at most
``max_refinement_rounds`` rounds. The pool dispatches units in fixed batches;
every request in a batch runs concurrently and the batch fully settles before
the next one starts. A failing unit never affects its siblings.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field

import numpy as np

from rigforge.engine.compositing import render_overlay
from rigforge.engine.config import PipelineConfig
from rigforge.engine.errors import ServiceError
from rigforge.engine.normalize import Critique, normalize_critique, normalize_extraction
from rigforge.engine.segmentation import SegmentationService, extraction_from_mask
from rigforge.llm.caller import call_service
from rigforge.llm.client import ReasoningRequest, ReasoningService
from rigforge.llm.prompts import critique_prompt, extraction_prompt
from rigforge.llm.schemas import CRITIQUE_SCHEMA, EXTRACTION_SCHEMA
from rigforge.models.parts import DiscoveryUnit, ExtractionResult, ExtractionStrategy
from rigforge.models.record import (
    CallLogEntry,
    ConversationalInput,
    FreshInput,
    RefinementEvent,
    RefinementTrace,
    StageInput,
    UnitError,
)
from rigforge.utils.imaging import digest

logger = logging.getLogger(__name__)

# (batch_index, batch_count, first_unit, last_unit, total_units), 1-based
ProgressCallback = Callable[[int, int, int, int, int], None]


@dataclass
class ExtractionPartition:
    """Pool outcome: successes and per-unit failures, both in manifest order."""

    results: list[ExtractionResult] = field(default_factory=list)
    errors: list[UnitError] = field(default_factory=list)
    traces: dict[str, RefinementTrace] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Single steps
# ---------------------------------------------------------------------------


async def _segment_unit(
    segmentation: SegmentationService,
    image: str,
    unit: DiscoveryUnit,
    call_log: list[CallLogEntry],
    config: PipelineConfig,
) -> ExtractionResult | None:
    """First-round proposal from a segmentation mask; None means fall back."""
    start = time.perf_counter()
    request_digest = digest(f"segment:{unit.id}:{unit.rough_bbox.as_list()}")
    try:
        mask = await segmentation.segment(image, unit.rough_bbox)
    except Exception as e:
        call_log.append(
            CallLogEntry(
                stage="extraction",
                unit_id=unit.id,
                prompt_digest=request_digest,
                duration_ms=round((time.perf_counter() - start) * 1000, 1),
                ok=False,
            )
        )
        logger.warning("Segmentation failed for %s, falling back to primitive fit: %s", unit.id, e)
        return None

    call_log.append(
        CallLogEntry(
            stage="extraction",
            unit_id=unit.id,
            prompt_digest=request_digest,
            response_digest=digest(np.asarray(mask).tobytes()),
            duration_ms=round((time.perf_counter() - start) * 1000, 1),
        )
    )
    try:
        return extraction_from_mask(unit, mask, config)
    except ServiceError as e:
        logger.warning("Mask for %s not usable, falling back to primitive fit: %s", unit.id, e)
        return None


async def propose_geometry(
    service: ReasoningService,
    image: str,
    unit: DiscoveryUnit,
    call_log: list[CallLogEntry],
    stage_input: StageInput | None = None,
) -> tuple[ExtractionResult, str]:
    """One proposal. Returns the normalized candidate and the prompt digest."""
    stage_input = stage_input or FreshInput()
    images = [image]
    if isinstance(stage_input, ConversationalInput) and stage_input.composite_image:
        images.append(stage_input.composite_image)

    prompt = extraction_prompt(unit, stage_input)
    request = ReasoningRequest(
        stage="extraction",
        prompt=prompt,
        images=images,
        response_schema=EXTRACTION_SCHEMA,
        task="extraction",
        unit_id=unit.id,
    )
    payload, _ = await call_service(service, request, call_log)
    return normalize_extraction(payload, unit), digest(prompt)


async def critique_geometry(
    service: ReasoningService,
    composite: str,
    unit: DiscoveryUnit,
    candidate: ExtractionResult,
    call_log: list[CallLogEntry],
) -> tuple[Critique, str]:
    prompt = critique_prompt(unit, candidate)
    request = ReasoningRequest(
        stage="extraction",
        prompt=prompt,
        images=[composite],
        response_schema=CRITIQUE_SCHEMA,
        task="critique",
        unit_id=unit.id,
    )
    payload, _ = await call_service(service, request, call_log)
    return normalize_critique(payload, unit.id), digest(prompt)


# ---------------------------------------------------------------------------
# Self-correction loop
# ---------------------------------------------------------------------------


async def refine_unit(
    service: ReasoningService,
    image: str,
    unit: DiscoveryUnit,
    call_log: list[CallLogEntry],
    config: PipelineConfig | None = None,
    stage_input: StageInput | None = None,
    segmentation: SegmentationService | None = None,
) -> tuple[ExtractionResult, RefinementTrace]:
    """Propose / composite / critique until acceptable or out of rounds.

    When rounds run out the last candidate is returned unchanged (confidence
    included); the trace says whether the loop converged. Any failed call
    propagates and fails the unit.
    """
    config = config or PipelineConfig()
    max_rounds = max(1, config.max_refinement_rounds)
    current: StageInput = stage_input or FreshInput()

    events: list[RefinementEvent] = []
    candidate: ExtractionResult | None = None
    converged = False
    rounds = 0

    for round_no in range(1, max_rounds + 1):
        rounds = round_no

        # 1. Propose
        candidate = None
        prompt_digest: str | None = None
        if (
            round_no == 1
            and segmentation is not None
            and isinstance(current, FreshInput)
            and unit.extraction_strategy is ExtractionStrategy.MASK_SEGMENTATION
        ):
            candidate = await _segment_unit(segmentation, image, unit, call_log, config)
        if candidate is None:
            candidate, prompt_digest = await propose_geometry(service, image, unit, call_log, current)
        events.append(
            RefinementEvent(round=round_no, step="propose", prompt_digest=prompt_digest, shape=candidate.shape)
        )

        # 2. Composite
        composite = render_overlay(image, candidate.shape, candidate.bbox)

        # 3. Critique
        critique, critique_digest = await critique_geometry(service, composite, unit, candidate, call_log)
        events.append(
            RefinementEvent(
                round=round_no,
                step="critique",
                prompt_digest=critique_digest,
                verdict=critique.verdict,
                feedback=critique.feedback,
            )
        )

        # 4. Decide
        if critique.acceptable:
            converged = True
            break
        logger.debug("Unit %s round %d/%d: %s", unit.id, round_no, max_rounds, critique.feedback)
        current = ConversationalInput(
            prior_output=candidate.model_dump_json(),
            feedback=critique.feedback,
            composite_image=composite,
        )

    if not converged:
        logger.info("Unit %s did not converge in %d rounds; keeping last candidate", unit.id, rounds)
    return candidate, RefinementTrace(unit_id=unit.id, rounds=rounds, converged=converged, events=events)


# ---------------------------------------------------------------------------
# Worker pool
# ---------------------------------------------------------------------------


def batched(units: Sequence[DiscoveryUnit], batch_size: int) -> list[list[DiscoveryUnit]]:
    size = max(1, batch_size)
    return [list(units[i : i + size]) for i in range(0, len(units), size)]


async def run_extraction_pool(
    service: ReasoningService,
    image: str,
    units: Sequence[DiscoveryUnit],
    call_log: list[CallLogEntry],
    config: PipelineConfig | None = None,
    inputs: Mapping[str, StageInput] | None = None,
    segmentation: SegmentationService | None = None,
    on_progress: ProgressCallback | None = None,
) -> ExtractionPartition:
    """Run every unit through ``refine_unit`` in fixed-size batches.

    ``inputs`` optionally maps unit id → stage input (conversational retries);
    units not in it run fresh.
    """
    config = config or PipelineConfig()
    inputs = inputs or {}
    batches = batched(units, config.batch_size)
    partition = ExtractionPartition()
    start = time.perf_counter()

    first = 1
    for batch_index, batch in enumerate(batches, start=1):
        last = first + len(batch) - 1
        logger.info(
            "Processing batch %d/%d (units %d-%d of %d)",
            batch_index,
            len(batches),
            first,
            last,
            len(units),
        )
        if on_progress is not None:
            on_progress(batch_index, len(batches), first, last, len(units))

        outcomes = await asyncio.gather(
            *(
                refine_unit(service, image, unit, call_log, config, inputs.get(unit.id), segmentation)
                for unit in batch
            ),
            return_exceptions=True,
        )

        for unit, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning("Extraction failed for %s: %s", unit.id, outcome)
                partition.errors.append(UnitError(id=unit.id, message=str(outcome) or type(outcome).__name__))
                continue
            result, trace = outcome
            partition.results.append(result)
            partition.traces[unit.id] = trace

        first = last + 1

    logger.info(
        "Extraction finished: %d ok, %d failed in %.1f ms",
        len(partition.results),
        len(partition.errors),
        (time.perf_counter() - start) * 1000,
    )
    return partition
