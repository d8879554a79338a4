"""Engine error → HTTP status mapping."""

from __future__ import annotations

from fastapi import HTTPException

from rigforge.engine.errors import PackingOverflow, PipelineStateError, ServiceError


def http_error(e: Exception, session_id: str | None = None) -> HTTPException:
    """Translate an engine exception into the matching ``HTTPException``."""
    if isinstance(e, ServiceError):
        return HTTPException(
            502,
            {"message": str(e), "stage": e.stage, "unit_id": e.unit_id, "session_id": session_id},
        )
    if isinstance(e, PipelineStateError):
        return HTTPException(409, str(e))
    if isinstance(e, PackingOverflow):
        return HTTPException(422, {"message": str(e), "part_ids": e.part_ids})
    if isinstance(e, KeyError):
        return HTTPException(404, f"Unknown unit {e.args[0]!r}" if e.args else "Not found")
    if isinstance(e, ValueError):
        return HTTPException(400, str(e))
    return HTTPException(500, str(e))
