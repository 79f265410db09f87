"""Tests for ProcessingPipeline — the text service is a scripted fake."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from mailsweep.mail.codec import UNKNOWN_SENDER
from mailsweep.mail.errors import ValidationError
from mailsweep.processing.pipeline import ProcessingPipeline, reply_references, reply_subject
from mailsweep.processing.text_service import TextGenerationError
from mailsweep.processing.types import DraftContext, Priority
from mailsweep.storage.memory import InMemoryEmailMemory
from tests.factories import make_message

T0 = datetime(2026, 2, 27, 9, 0, tzinfo=timezone.utc)


class FakeText:
    """Records prompts; returns canned summary/draft text and extraction data."""

    def __init__(self, text: str = "Alice asks for the budget figures.", data: Any = None) -> None:
        self.text = text
        self.data = data if data is not None else {}
        self.prompts: list[str] = []
        self.extracted: list[str] = []

    async def generate_text(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.text

    async def extract_structured_data(self, content: str) -> Any:
        self.extracted.append(content)
        return self.data


class FailingText(FakeText):
    async def generate_text(self, prompt: str) -> str:
        raise TextGenerationError("no text")


# ── Reply helpers ──────────────────────────────────────────────────────────────


class TestReplySubject:
    def test_prefixes_once(self) -> None:
        assert reply_subject("Status") == "Re: Status"

    def test_existing_prefix_is_kept(self) -> None:
        assert reply_subject("Re: Status") == "Re: Status"
        assert reply_subject(reply_subject("Status")) == "Re: Status"

    def test_prefix_check_is_case_insensitive(self) -> None:
        assert reply_subject("RE: Status") == "RE: Status"

    def test_empty_subject(self) -> None:
        assert reply_subject("") == "Re:"


class TestReplyReferences:
    def test_appends_replied_id(self) -> None:
        message = make_message("m3", references=["m1", "m2"])
        assert reply_references(message) == ["m1", "m2", "m3"]

    def test_no_duplicates(self) -> None:
        message = make_message("m2", references=["m1", "m2", "m1"])
        assert reply_references(message) == ["m1", "m2"]


# ── process_email ──────────────────────────────────────────────────────────────


class TestProcessEmail:
    async def test_builds_classified_summary(self, memory: InMemoryEmailMemory) -> None:
        text = FakeText(
            "Alice asks: can you send the figures ASAP?",
            data={"priority": "high", "action_items": ["Send figures"], "categories": ["document"]},
        )
        pipeline = ProcessingPipeline(text, memory)
        message = make_message("m1")

        summary = await pipeline.process_email(message)

        assert summary.id == "m1"
        assert summary.thread_id == message.thread_id
        assert summary.summary == "Alice asks: can you send the figures ASAP?"
        assert summary.priority is Priority.HIGH
        assert summary.action_required is True
        assert "document" in summary.categories
        assert "important" in summary.categories
        assert summary.metadata["source"] == "email_processing"
        assert summary.metadata["action_items"] == ["Send figures"]
        assert "processed_at" in summary.metadata

    async def test_stores_email_and_summary(self, memory: InMemoryEmailMemory) -> None:
        pipeline = ProcessingPipeline(FakeText(), memory)
        await pipeline.process_email(make_message("m1"))
        assert "m1" in memory.messages
        assert "m1" in memory.summaries
        assert await memory.get_status("m1") == "summarized"

    async def test_model_sees_message_body(self, memory: InMemoryEmailMemory) -> None:
        text = FakeText()
        await ProcessingPipeline(text, memory).process_email(make_message(body="Budget is 42k"))
        assert text.extracted == ["Budget is 42k"]
        assert "Budget is 42k" in text.prompts[0]

    async def test_free_text_extraction_is_tolerated(self, memory: InMemoryEmailMemory) -> None:
        text = FakeText("Lunch on Thursday", data="just words")
        summary = await ProcessingPipeline(text, memory).process_email(make_message())
        assert summary.priority is Priority.MEDIUM
        assert summary.metadata["text"] == "just words"

    async def test_text_failure_propagates(self, memory: InMemoryEmailMemory) -> None:
        with pytest.raises(TextGenerationError):
            await ProcessingPipeline(FailingText(), memory).process_email(make_message())


# ── draft_response ─────────────────────────────────────────────────────────────


class TestDraftResponse:
    async def test_draft_shape(self, memory: InMemoryEmailMemory) -> None:
        text = FakeText("  Hi Alice,\n\nSure.\n\nBest  ")
        message = make_message("m2", subject="Status", references=["m1"])

        draft = await ProcessingPipeline(text, memory).draft_response(message)

        assert draft.to == [message.from_]
        assert draft.subject == "Re: Status"
        assert draft.body_text == "Hi Alice,\n\nSure.\n\nBest"
        assert draft.thread_id == message.thread_id
        assert draft.in_reply_to == "m2"
        assert draft.references == ["m1", "m2"]
        assert await memory.get_status("m2") == "drafted"

    async def test_reply_to_reply_keeps_single_prefix(self, memory: InMemoryEmailMemory) -> None:
        draft = await ProcessingPipeline(FakeText(), memory).draft_response(
            make_message(subject="Re: Status")
        )
        assert draft.subject == "Re: Status"

    async def test_history_from_memory_is_ordered_and_excludes_target(
        self, memory: InMemoryEmailMemory
    ) -> None:
        thread = "thread_x"
        later = make_message("later", thread_id=thread, body="SECOND", sent_at=T0 + timedelta(hours=2))
        earlier = make_message("earlier", thread_id=thread, body="FIRST", sent_at=T0)
        target = make_message("target", thread_id=thread, body="TARGET", sent_at=T0 + timedelta(hours=3))
        for m in (later, earlier, target):
            await memory.store_email(m)

        text = FakeText()
        await ProcessingPipeline(text, memory).draft_response(target)

        prompt = text.prompts[0]
        history = prompt.split("=== CONVERSATION HISTORY ===", 1)[1]
        history = history.split("=== ADDITIONAL CONTEXT ===", 1)[0]
        assert history.index("FIRST") < history.index("SECOND")
        assert "TARGET" not in history

    async def test_context_history_overrides_memory(self, memory: InMemoryEmailMemory) -> None:
        await memory.store_email(make_message("stored", thread_id="t", body="FROM MEMORY"))
        supplied = make_message("given", thread_id="t", body="FROM CONTEXT")
        context = DraftContext(conversation_history=[supplied], additional_context="Decline politely")

        text = FakeText()
        await ProcessingPipeline(text, memory).draft_response(
            make_message("target", thread_id="t"), context
        )

        assert "FROM CONTEXT" in text.prompts[0]
        assert "FROM MEMORY" not in text.prompts[0]
        assert "Decline politely" in text.prompts[0]

    async def test_empty_thread_uses_placeholder(self, memory: InMemoryEmailMemory) -> None:
        text = FakeText()
        await ProcessingPipeline(text, memory).draft_response(make_message())
        assert "No previous messages in this thread." in text.prompts[0]
        assert "No additional context provided." in text.prompts[0]

    async def test_unknown_sender_is_rejected(self, memory: InMemoryEmailMemory) -> None:
        text = FakeText()
        message = replace(make_message("m9"), from_=UNKNOWN_SENDER)
        with pytest.raises(ValidationError):
            await ProcessingPipeline(text, memory).draft_response(message)
        assert text.prompts == []
        assert await memory.get_status("m9") is None
