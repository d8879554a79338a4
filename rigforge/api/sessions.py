"""/api/sessions — drive one pipeline run through its confirm / retry transitions."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from rigforge.api.atlas import pack_response
from rigforge.api.errors import http_error
from rigforge.dependencies import get_reasoning_service, get_segmentation_service, get_store
from rigforge.engine.errors import PackingOverflow, PipelineStateError, ServiceError
from rigforge.engine.segmentation import SegmentationService
from rigforge.llm.client import ReasoningService
from rigforge.models.record import Stage
from rigforge.models.requests import CreateSessionRequest, RetryRequest, SessionPackRequest
from rigforge.models.responses import (
    PackResponse,
    SessionResponse,
    UnitEventsResponse,
    ValidateResponse,
)
from rigforge.sessions import Session, SessionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions")

_HANDLED = (ServiceError, PipelineStateError, PackingOverflow, KeyError, ValueError)


def _get_session(store: SessionStore, session_id: str) -> Session:
    session = store.get(session_id)
    if session is None:
        raise HTTPException(404, f"Unknown session {session_id!r}")
    return session


def _session_response(session: Session) -> SessionResponse:
    orch = session.orchestrator
    width, height = orch.image_size or (None, None)
    return SessionResponse(
        id=session.id,
        stage=orch.stage,
        status=orch.status,
        image_width=width,
        image_height=height,
        record=orch.snapshot(),
    )


@router.post("", response_model=SessionResponse)
async def create_session(
    req: CreateSessionRequest,
    store: SessionStore = Depends(get_store),
    service: ReasoningService = Depends(get_reasoning_service),
    segmentation: SegmentationService | None = Depends(get_segmentation_service),
) -> SessionResponse:
    """Create a session and run Discovery on the uploaded image."""
    session = store.create(service, segmentation=segmentation)
    try:
        await session.orchestrator.run_discovery(req.image)
    except ValueError as e:
        store.delete(session.id)
        raise http_error(e) from e
    except _HANDLED as e:
        raise http_error(e, session.id) from e
    return _session_response(session)


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, store: SessionStore = Depends(get_store)) -> SessionResponse:
    return _session_response(_get_session(store, session_id))


@router.delete("/{session_id}")
async def delete_session(session_id: str, store: SessionStore = Depends(get_store)) -> dict[str, str]:
    if not store.delete(session_id):
        raise HTTPException(404, f"Unknown session {session_id!r}")
    return {"status": "deleted"}


@router.post("/{session_id}/confirm", response_model=SessionResponse)
async def confirm(session_id: str, store: SessionStore = Depends(get_store)) -> SessionResponse:
    """Accept the current stage's output and run the next stage."""
    session = _get_session(store, session_id)
    orch = session.orchestrator
    try:
        if orch.stage is Stage.DISCOVERY:
            await orch.confirm_discovery()
        elif orch.stage is Stage.EXTRACTION:
            await orch.confirm_extraction()
        elif orch.stage is Stage.ASSEMBLY:
            orch.confirm_assembly()
        else:
            raise PipelineStateError(f"Nothing to confirm at {orch.stage.value}")
    except _HANDLED as e:
        raise http_error(e, session_id) from e
    return _session_response(session)


@router.post("/{session_id}/retry", response_model=SessionResponse)
async def retry(session_id: str, req: RetryRequest, store: SessionStore = Depends(get_store)) -> SessionResponse:
    """Re-run a stage (the current one unless ``stage`` is given)."""
    session = _get_session(store, session_id)
    orch = session.orchestrator
    stage = req.stage or orch.stage
    try:
        if stage is Stage.DISCOVERY:
            await orch.retry_discovery(req.mode, req.feedback)
        elif stage is Stage.EXTRACTION:
            await orch.retry_extraction(req.mode, req.feedback)
        elif stage in (Stage.ASSEMBLY, Stage.COMPLETE):
            await orch.retry_assembly(req.mode, req.feedback)
        else:
            raise PipelineStateError(f"Nothing to retry at {stage.value}")
    except _HANDLED as e:
        raise http_error(e, session_id) from e
    return _session_response(session)


@router.post("/{session_id}/units/{unit_id}/retry", response_model=SessionResponse)
async def retry_unit(
    session_id: str,
    unit_id: str,
    req: RetryRequest,
    store: SessionStore = Depends(get_store),
) -> SessionResponse:
    session = _get_session(store, session_id)
    try:
        await session.orchestrator.retry_unit(unit_id, req.mode, req.feedback)
    except _HANDLED as e:
        raise http_error(e, session_id) from e
    return _session_response(session)


@router.get("/{session_id}/units/{unit_id}/events", response_model=UnitEventsResponse)
async def unit_events(session_id: str, unit_id: str, store: SessionStore = Depends(get_store)) -> UnitEventsResponse:
    """Refinement history, current error and call log entries for one unit."""
    record = _get_session(store, session_id).orchestrator.snapshot()
    if record.get_unit(unit_id) is None:
        raise HTTPException(404, f"Unknown unit {unit_id!r}")
    return UnitEventsResponse(
        unit_id=unit_id,
        trace=record.refinements.get(unit_id),
        error=record.get_error(unit_id),
        calls=[c for c in record.call_log if c.unit_id == unit_id],
    )


@router.post("/{session_id}/pack", response_model=PackResponse)
async def pack(session_id: str, req: SessionPackRequest, store: SessionStore = Depends(get_store)) -> PackResponse:
    orch = _get_session(store, session_id).orchestrator
    try:
        layout = orch.pack(req.algorithm, req.canvas_size, strict=req.strict)
    except _HANDLED as e:
        raise http_error(e, session_id) from e
    return pack_response(layout, req.include_template)


@router.get("/{session_id}/validate", response_model=ValidateResponse)
async def validate(session_id: str, store: SessionStore = Depends(get_store)) -> ValidateResponse:
    orch = _get_session(store, session_id).orchestrator
    try:
        report = orch.validate()
    except PipelineStateError as e:
        raise http_error(e, session_id) from e
    return ValidateResponse.from_report(report)
