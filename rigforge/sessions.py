"""In-memory pipeline sessions — one orchestrator per uploaded image. No persistence."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field

from rigforge.engine.config import PipelineConfig
from rigforge.engine.orchestrator import PipelineOrchestrator
from rigforge.engine.segmentation import SegmentationService
from rigforge.llm.client import ReasoningService

logger = logging.getLogger(__name__)


@dataclass
class Session:
    id: str
    orchestrator: PipelineOrchestrator
    created_at: float = field(default_factory=time.time)


class SessionStore:
    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(
        self,
        service: ReasoningService,
        config: PipelineConfig | None = None,
        segmentation: SegmentationService | None = None,
    ) -> Session:
        session = Session(
            id=uuid.uuid4().hex[:12],
            orchestrator=PipelineOrchestrator(service, config or PipelineConfig.from_settings(), segmentation),
        )
        self._sessions[session.id] = session
        logger.info("Created session %s", session.id)
        return session

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def clear(self) -> None:
        self._sessions.clear()


_store: SessionStore | None = None


def get_session_store() -> SessionStore:
    """Get or create the global SessionStore singleton."""
    global _store
    if _store is None:
        _store = SessionStore()
    return _store
