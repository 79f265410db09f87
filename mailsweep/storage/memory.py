"""Memory-store contract plus an in-process implementation."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from mailsweep.mail.types import Message
from mailsweep.processing.types import EmailSummary, MessageStatus

logger = logging.getLogger(__name__)


@runtime_checkable
class EmailMemory(Protocol):
    """Longer-lived retention of messages, summaries and their status.

    ``get_conversation_history`` returns the thread's messages sorted by
    ``sent_at`` (oldest first).
    """

    async def store_email(self, message: Message) -> None: ...

    async def store_summary(self, summary: EmailSummary) -> None: ...

    async def get_conversation_history(self, thread_id: str) -> list[Message]: ...

    async def update_status(self, message_id: str, status: str) -> None: ...

    async def get_status(self, message_id: str) -> str | None: ...


class InMemoryEmailMemory:
    """Dict-backed EmailMemory. Used in tests and for one-shot CLI runs."""

    def __init__(self) -> None:
        self.messages: dict[str, Message] = {}
        self.summaries: dict[str, EmailSummary] = {}
        self.statuses: dict[str, str] = {}

    async def store_email(self, message: Message) -> None:
        self.messages[message.id] = message
        self.statuses.setdefault(message.id, MessageStatus.RECEIVED.value)

    async def store_summary(self, summary: EmailSummary) -> None:
        self.summaries[summary.id] = summary
        self.statuses[summary.id] = MessageStatus.SUMMARIZED.value

    async def get_conversation_history(self, thread_id: str) -> list[Message]:
        thread = [m for m in self.messages.values() if m.thread_id == thread_id]
        return sorted(thread, key=lambda m: m.sent_at)

    async def update_status(self, message_id: str, status: str) -> None:
        logger.debug("Status of %s -> %s", message_id, status)
        self.statuses[message_id] = status

    async def get_status(self, message_id: str) -> str | None:
        return self.statuses.get(message_id)
