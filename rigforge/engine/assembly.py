"""Assembly stage — merge manifest and geometry into a rig (parents, pivots, motion)."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence

from rigforge.engine.normalize import normalize_assembly
from rigforge.llm.caller import call_service
from rigforge.llm.client import ChunkCallback, ReasoningRequest, ReasoningService
from rigforge.llm.prompts import assembly_prompt
from rigforge.llm.schemas import ASSEMBLY_SCHEMA
from rigforge.models.parts import AssemblyResult, DiscoveryUnit, ExtractionResult
from rigforge.models.record import CallLogEntry, FreshInput, StageInput

logger = logging.getLogger(__name__)


async def run_assembly_stage(
    service: ReasoningService,
    image: str,
    units: Sequence[DiscoveryUnit],
    results: Sequence[ExtractionResult],
    call_log: list[CallLogEntry],
    stage_input: StageInput | None = None,
    on_chunk: ChunkCallback | None = None,
) -> list[AssemblyResult]:
    stage_input = stage_input or FreshInput()
    start = time.perf_counter()
    request = ReasoningRequest(
        stage="assembly",
        prompt=assembly_prompt(units, results, stage_input),
        images=[image],
        response_schema=ASSEMBLY_SCHEMA,
        task="assembly",
    )
    payload, _ = await call_service(service, request, call_log, on_chunk)
    parts = normalize_assembly(payload, units, results)

    logger.info(
        "Assembly (%s) rigged %d parts in %.1f ms",
        stage_input.mode,
        len(parts),
        (time.perf_counter() - start) * 1000,
    )
    return parts
