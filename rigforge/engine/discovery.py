"""Discovery stage — one image in, a manifest of candidate units out."""

from __future__ import annotations

import logging
import time

from rigforge.engine.normalize import normalize_manifest
from rigforge.llm.caller import call_service
from rigforge.llm.client import ChunkCallback, ReasoningRequest, ReasoningService
from rigforge.llm.prompts import discovery_prompt
from rigforge.llm.schemas import DISCOVERY_SCHEMA
from rigforge.models.parts import DiscoveryUnit
from rigforge.models.record import CallLogEntry, FreshInput, StageInput

logger = logging.getLogger(__name__)


async def run_discovery_stage(
    service: ReasoningService,
    image: str,
    call_log: list[CallLogEntry],
    stage_input: StageInput | None = None,
    on_chunk: ChunkCallback | None = None,
) -> list[DiscoveryUnit]:
    stage_input = stage_input or FreshInput()
    start = time.perf_counter()
    request = ReasoningRequest(
        stage="discovery",
        prompt=discovery_prompt(stage_input),
        images=[image],
        response_schema=DISCOVERY_SCHEMA,
        task="discovery",
    )
    payload, _ = await call_service(service, request, call_log, on_chunk)
    units = normalize_manifest(payload)

    logger.info(
        "Discovery (%s) found %d units in %.1f ms",
        stage_input.mode,
        len(units),
        (time.perf_counter() - start) * 1000,
    )
    return units
