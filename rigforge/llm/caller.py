"""Call wrapper — one reasoning call, one call-log entry, one decoded payload.

The call log is owned by the orchestrator's record and passed in by
reference; every call appends exactly one entry whether it succeeds or not.
Transport failures, empty responses and undecodable payloads all come out as
``ServiceError``.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from rigforge.engine.errors import ServiceError
from rigforge.llm.client import ChunkCallback, ReasoningRequest, ReasoningService
from rigforge.llm.parsing import extract_json
from rigforge.models.record import CallLogEntry
from rigforge.utils.imaging import digest

logger = logging.getLogger(__name__)


async def call_service(
    service: ReasoningService,
    request: ReasoningRequest,
    call_log: list[CallLogEntry],
    on_chunk: ChunkCallback | None = None,
) -> tuple[Any, str]:
    """Run one request. Returns ``(payload, response_text)``."""
    prompt_digest = digest(request.prompt)
    start = time.perf_counter()

    def log(response: str | None, ok: bool) -> None:
        call_log.append(
            CallLogEntry(
                stage=request.stage,
                unit_id=request.unit_id,
                prompt_digest=prompt_digest,
                response_digest=digest(response) if response else None,
                duration_ms=round((time.perf_counter() - start) * 1000, 1),
                ok=ok,
            )
        )

    try:
        text = await service.generate(request, on_chunk)
    except ServiceError:
        log(None, ok=False)
        raise
    except Exception as e:
        log(None, ok=False)
        raise ServiceError(f"{request.stage}: {e}", request.stage, request.unit_id) from e

    if not text or not text.strip():
        log(text, ok=False)
        raise ServiceError(f"{request.stage}: No response", request.stage, request.unit_id)

    try:
        payload = extract_json(text)
    except ValueError as e:
        log(text, ok=False)
        raise ServiceError(f"{request.stage}: {e}", request.stage, request.unit_id) from e

    log(text, ok=True)
    logger.debug(
        "%s call ok (unit=%s, %s chars, %.1f ms)",
        request.stage,
        request.unit_id,
        len(text),
        call_log[-1].duration_ms,
    )
    return payload, text
