"""API request models."""

from __future__ import annotations

from pydantic import BaseModel, Field

from rigforge.models.atlas import PackingAlgorithm
from rigforge.models.parts import AssemblyResult
from rigforge.models.record import RetryMode, Stage


class PackRequest(BaseModel):
    parts: list[AssemblyResult] = Field(..., description="Rigged parts with normalized bboxes")
    image_width: int = Field(..., gt=0, description="Source image width in pixels")
    image_height: int = Field(..., gt=0, description="Source image height in pixels")
    canvas_size: int = Field(default=1024, description="Square atlas size (1024 or 2048)")
    algorithm: PackingAlgorithm = PackingAlgorithm.MAXRECTS
    strict: bool = Field(default=False, description="Fail instead of using the MaxRects origin fallback")
    include_template: bool = Field(default=False, description="Also render the numbered layout template")


class ValidateRequest(BaseModel):
    parts: list[AssemblyResult]


class CreateSessionRequest(BaseModel):
    image: str = Field(..., description="Base64 PNG (or data URL) of the source image")


class RetryRequest(BaseModel):
    stage: Stage | None = Field(default=None, description="Stage to retry; defaults to the current stage")
    mode: RetryMode = RetryMode.FRESH
    feedback: str | None = Field(default=None, description="Correction hint for conversational retries")


class SessionPackRequest(BaseModel):
    canvas_size: int = 1024
    algorithm: PackingAlgorithm = PackingAlgorithm.MAXRECTS
    strict: bool = False
    include_template: bool = False
