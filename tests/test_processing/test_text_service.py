"""Tests for AnthropicTextService with a mocked AsyncAnthropic client."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from anthropic.types import TextBlock, ToolUseBlock

from mailsweep.processing.prompts import BODY_CHAR_LIMIT, EXTRACTION_TOOL_NAME
from mailsweep.processing.text_service import (
    AnthropicTextService,
    TextGenerationError,
    TextService,
)


def mock_response(*blocks: object, stop_reason: str = "end_turn") -> MagicMock:
    r = MagicMock()
    r.content = list(blocks)
    r.stop_reason = stop_reason
    return r


@pytest.fixture
def service() -> AnthropicTextService:
    return AnthropicTextService(api_key="test-key", model="test-model")


class TestGenerateText:
    async def test_joins_text_blocks(self, service: AnthropicTextService) -> None:
        service._client.messages.create = AsyncMock(
            return_value=mock_response(
                TextBlock(type="text", text="Hello "), TextBlock(type="text", text="world")
            )
        )
        assert await service.generate_text("hi") == "Hello world"
        kwargs = service._client.messages.create.await_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["messages"] == [{"role": "user", "content": "hi"}]

    async def test_empty_response_raises(self, service: AnthropicTextService) -> None:
        service._client.messages.create = AsyncMock(return_value=mock_response())
        with pytest.raises(TextGenerationError):
            await service.generate_text("hi")


class TestExtractStructuredData:
    async def test_returns_tool_input(self, service: AnthropicTextService) -> None:
        block = ToolUseBlock(
            type="tool_use", id="toolu_1", name=EXTRACTION_TOOL_NAME,
            input={"requires_action": True, "action_items": ["Reply"]},
        )
        service._client.messages.create = AsyncMock(
            return_value=mock_response(block, stop_reason="tool_use")
        )

        data = await service.extract_structured_data("Please reply")

        assert data == {"requires_action": True, "action_items": ["Reply"]}
        kwargs = service._client.messages.create.await_args.kwargs
        assert kwargs["tool_choice"] == {"type": "tool", "name": EXTRACTION_TOOL_NAME}
        assert "Please reply" in kwargs["messages"][0]["content"]

    async def test_wrong_tool_raises(self, service: AnthropicTextService) -> None:
        wrong = ToolUseBlock(type="tool_use", id="toolu_x", name="other_tool", input={})
        service._client.messages.create = AsyncMock(return_value=mock_response(wrong))
        with pytest.raises(TextGenerationError):
            await service.extract_structured_data("x")

    async def test_long_content_is_truncated(self, service: AnthropicTextService) -> None:
        block = ToolUseBlock(type="tool_use", id="t", name=EXTRACTION_TOOL_NAME, input={})
        service._client.messages.create = AsyncMock(return_value=mock_response(block))
        await service.extract_structured_data("x" * (BODY_CHAR_LIMIT + 50))
        content = service._client.messages.create.await_args.kwargs["messages"][0]["content"]
        assert "truncated" in content


def test_satisfies_protocol(service: AnthropicTextService) -> None:
    assert isinstance(service, TextService)


def test_model_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEXT_MODEL", "env-model")
    assert AnthropicTextService(api_key="k")._model == "env-model"
