"""FastAPI dependency injection."""

from __future__ import annotations

from rigforge.config import settings
from rigforge.engine.segmentation import SegmentationService
from rigforge.llm.client import AnthropicReasoningService, ReasoningService
from rigforge.sessions import SessionStore, get_session_store


def get_settings():
    return settings


def get_reasoning_service() -> ReasoningService:
    return AnthropicReasoningService()


def get_segmentation_service() -> SegmentationService | None:
    # No segmentation backend ships with the app; mask units fall back to primitive fit
    return None


def get_store() -> SessionStore:
    return get_session_store()
