"""Reasoning service contract and its LangChain ChatAnthropic implementation."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any, Protocol

from pydantic import BaseModel, Field

from rigforge.config import settings
from rigforge.engine.errors import ServiceError
from rigforge.llm.model_router import get_model_for_task

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], None]


class ReasoningRequest(BaseModel):
    stage: str = Field(..., description="Pipeline stage issuing the call")
    prompt: str
    images: list[str] = Field(default_factory=list, description="Base64 PNG images, in order")
    response_schema: dict[str, Any] | None = None
    task: str = Field(default="", description="Routing key for model selection; defaults to stage")
    unit_id: str | None = None


class ReasoningService(Protocol):
    async def generate(self, request: ReasoningRequest, on_chunk: ChunkCallback | None = None) -> str:
        """Return the response text (culminating in a JSON payload) or raise."""
        ...


def _image_block(data: str) -> dict[str, Any]:
    return {
        "type": "image",
        "source": {
            "type": "base64",
            "media_type": "image/png",
            "data": data,
        },
    }


def _chunk_text(content: Any) -> str:
    """Text carried by one streamed chunk (plain string or content blocks)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
            elif isinstance(block, str):
                parts.append(block)
        return "".join(parts)
    return ""


class AnthropicReasoningService:
    """Vision + text calls to Claude through langchain-anthropic, streamed."""

    def __init__(
        self,
        api_key: str | None = None,
        max_tokens: int | None = None,
    ) -> None:
        self.api_key = settings.anthropic_api_key if api_key is None else api_key
        self.max_tokens = max_tokens or settings.max_tokens

    def build_content(self, request: ReasoningRequest) -> list[dict[str, Any]]:
        content: list[dict[str, Any]] = [_image_block(img) for img in request.images]
        text = request.prompt
        if request.response_schema is not None:
            text += (
                "\n\nThe JSON must match this schema:\n```json\n"
                + json.dumps(request.response_schema, indent=2)
                + "\n```"
            )
        content.append({"type": "text", "text": text})
        return content

    async def generate(self, request: ReasoningRequest, on_chunk: ChunkCallback | None = None) -> str:
        if not self.api_key:
            raise ServiceError(
                "LLM not configured: set ANTHROPIC_API_KEY in .env",
                request.stage,
                request.unit_id,
            )

        from langchain_anthropic import ChatAnthropic
        from langchain_core.messages import HumanMessage

        model_id = get_model_for_task(request.task or request.stage)
        llm = ChatAnthropic(
            model=model_id,
            api_key=self.api_key,
            max_tokens=self.max_tokens,
        )
        message = HumanMessage(content=self.build_content(request))

        logger.debug("Calling %s for %s (unit=%s)", model_id, request.stage, request.unit_id)
        full_text = ""
        async for chunk in llm.astream([message]):
            text = _chunk_text(chunk.content)
            if text:
                full_text += text
                if on_chunk is not None:
                    on_chunk(text)

        return full_text
