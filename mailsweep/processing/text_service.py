"""Text-generation collaborator backed by Anthropic."""

from __future__ import annotations

import logging
import os
from typing import Any, Protocol, runtime_checkable

from anthropic import AsyncAnthropic
from anthropic.types import TextBlock, ToolUseBlock

from mailsweep.processing.prompts import (
    EXTRACTION_TOOL,
    EXTRACTION_TOOL_NAME,
    build_extraction_messages,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-6"
_MAX_TOKENS = 1000
_EXTRACTION_MAX_TOKENS = 1024


class TextGenerationError(Exception):
    """Raised when the model returns no usable text or tool call."""


@runtime_checkable
class TextService(Protocol):
    """Narrow contract the pipeline depends on."""

    async def generate_text(self, prompt: str) -> str: ...

    async def extract_structured_data(self, content: str) -> Any: ...


class AnthropicTextService:
    """TextService implementation using the Messages API.

    ``extract_structured_data`` forces a tool call so the result is always a
    dict; callers still normalise it with ``ExtractedData.from_raw``.

    Usage::

        text = AnthropicTextService()
        reply = await text.generate_text("Draft a polite decline")
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        client: AsyncAnthropic | None = None,
    ) -> None:
        self._client = client or AsyncAnthropic(
            api_key=api_key or os.environ.get("ANTHROPIC_API_KEY", "")
        )
        self._model = model or os.environ.get("TEXT_MODEL", DEFAULT_MODEL)

    async def generate_text(self, prompt: str) -> str:
        """Return the model's plain-text completion for ``prompt``.

        Raises:
            TextGenerationError: the response contained no text.
        """
        response = await self._client.messages.create(
            model=self._model,
            max_tokens=_MAX_TOKENS,
            messages=[{"role": "user", "content": prompt}],
        )
        text = "".join(b.text for b in response.content if isinstance(b, TextBlock)).strip()
        if not text:
            raise TextGenerationError(
                f"Model returned no text (stop_reason={response.stop_reason!r})"
            )
        return text

    async def extract_structured_data(self, content: str) -> dict[str, Any]:
        """Return the input of a forced ``record_extracted_data`` tool call.

        Raises:
            TextGenerationError: the model did not call the tool.
        """
        response = await self._client.messages.create(
            model=self._model,
            max_tokens=_EXTRACTION_MAX_TOKENS,
            tools=[EXTRACTION_TOOL],  # type: ignore[list-item]
            tool_choice={"type": "tool", "name": EXTRACTION_TOOL_NAME},
            messages=build_extraction_messages(content),  # type: ignore[arg-type]
        )
        for block in response.content:
            if isinstance(block, ToolUseBlock) and block.name == EXTRACTION_TOOL_NAME:
                data = block.input
                return data if isinstance(data, dict) else {}
        raise TextGenerationError(
            f"Model did not return a {EXTRACTION_TOOL_NAME} tool call "
            f"(stop_reason={response.stop_reason!r})"
        )
