"""Tests for InMemoryEmailMemory."""

from datetime import datetime, timedelta, timezone

from mailsweep.processing.types import EmailSummary, Priority
from mailsweep.storage.db import EmailDatabase
from mailsweep.storage.memory import EmailMemory, InMemoryEmailMemory
from tests.factories import make_message

T0 = datetime(2026, 2, 27, 9, 0, tzinfo=timezone.utc)


def test_implementations_satisfy_protocol() -> None:
    assert isinstance(InMemoryEmailMemory(), EmailMemory)
    db = EmailDatabase(":memory:")
    try:
        assert isinstance(db, EmailMemory)
    finally:
        db.close()


class TestInMemoryEmailMemory:
    async def test_store_email_sets_received(self, memory: InMemoryEmailMemory) -> None:
        await memory.store_email(make_message("m1"))
        assert await memory.get_status("m1") == "received"

    async def test_restoring_keeps_existing_status(self, memory: InMemoryEmailMemory) -> None:
        await memory.store_email(make_message("m1"))
        await memory.update_status("m1", "drafted")
        await memory.store_email(make_message("m1"))
        assert await memory.get_status("m1") == "drafted"

    async def test_store_summary_sets_summarized(self, memory: InMemoryEmailMemory) -> None:
        message = make_message("m1")
        await memory.store_summary(
            EmailSummary(
                id="m1", thread_id=message.thread_id, subject=message.subject,
                from_=message.from_, sent_at=message.sent_at, summary="s",
                action_required=False, priority=Priority.LOW,
            )
        )
        assert await memory.get_status("m1") == "summarized"

    async def test_history_is_per_thread_and_sorted(self, memory: InMemoryEmailMemory) -> None:
        await memory.store_email(make_message("b", thread_id="t", sent_at=T0 + timedelta(hours=1)))
        await memory.store_email(make_message("a", thread_id="t", sent_at=T0))
        await memory.store_email(make_message("x", thread_id="other", sent_at=T0))
        history = await memory.get_conversation_history("t")
        assert [m.id for m in history] == ["a", "b"]

    async def test_unknown_status_is_none(self, memory: InMemoryEmailMemory) -> None:
        assert await memory.get_status("nope") is None
