"""Health check."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from rigforge import __version__
from rigforge.config import settings
from rigforge.dependencies import get_store
from rigforge.models.responses import HealthResponse
from rigforge.sessions import SessionStore

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(store: SessionStore = Depends(get_store)) -> HealthResponse:
    return HealthResponse(
        status="ok",
        version=__version__,
        llm_configured=bool(settings.anthropic_api_key),
        sessions=len(store),
    )
