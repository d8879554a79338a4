"""Task → model selection. Cheap model for critiques, mid-tier for geometry, frontier for structure."""

from __future__ import annotations

from rigforge.config import settings

_TASK_MODEL_MAP = {
    "discovery": "frontier",
    "extraction": "mid",
    "critique": "cheap",
    "assembly": "frontier",
}


def get_model_for_task(task: str) -> str:
    tier = _TASK_MODEL_MAP.get(task, "mid")
    if tier == "cheap":
        return settings.model_cheap
    elif tier == "mid":
        return settings.model_mid
    else:
        return settings.model_frontier
