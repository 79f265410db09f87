"""ProcessingPipeline: summaries, triage and reply drafts for decoded messages."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from mailsweep.mail.codec import UNKNOWN_SENDER
from mailsweep.mail.errors import ValidationError
from mailsweep.mail.types import Draft, Message
from mailsweep.processing.classifier import (
    determine_action_required,
    determine_priority,
    extract_categories,
)
from mailsweep.processing.prompts import build_reply_prompt, build_summary_prompt, message_content
from mailsweep.processing.text_service import TextService
from mailsweep.processing.types import DraftContext, EmailSummary, ExtractedData, MessageStatus
from mailsweep.storage.memory import EmailMemory

logger = logging.getLogger(__name__)

_REPLY_PREFIX = "Re:"


def reply_subject(subject: str) -> str:
    """Prefix ``Re:`` once; a subject that already starts with it is kept as is."""
    subject = subject.strip()
    if subject[: len(_REPLY_PREFIX)].lower() == _REPLY_PREFIX.lower():
        return subject
    return f"{_REPLY_PREFIX} {subject}" if subject else _REPLY_PREFIX


def reply_references(message: Message) -> list[str]:
    """Prior references plus the replied-to id, without duplicates."""
    chain = list(dict.fromkeys(message.references))
    if message.id in chain:
        chain.remove(message.id)
    return [*chain, message.id]


class ProcessingPipeline:
    """Turns decoded messages into EmailSummary objects and reply Drafts.

    Classification is rule-based (see ``classifier``); only the summary text,
    the structured extraction and the draft body come from the text service.

    Usage::

        pipeline = ProcessingPipeline(AnthropicTextService(), InMemoryEmailMemory())
        summary = await pipeline.process_email(message)
    """

    def __init__(self, text: TextService, memory: EmailMemory) -> None:
        self._text = text
        self._memory = memory

    @property
    def memory(self) -> EmailMemory:
        return self._memory

    async def process_email(self, message: Message) -> EmailSummary:
        """Store, summarise and classify one message.

        Errors from the text service propagate; sweeps capture them per
        message.
        """
        await self._memory.store_email(message)

        content = message_content(message)
        raw_data, summary_text = await asyncio.gather(
            self._text.extract_structured_data(content),
            self._text.generate_text(build_summary_prompt(content)),
        )
        extracted = ExtractedData.from_raw(raw_data)
        summary_text = summary_text.strip()

        summary = EmailSummary(
            id=message.id,
            thread_id=message.thread_id,
            subject=message.subject,
            from_=message.from_,
            sent_at=message.sent_at,
            summary=summary_text,
            action_required=determine_action_required(summary_text, extracted),
            priority=determine_priority(summary_text, extracted),
            categories=extract_categories(summary_text, extracted),
            metadata={
                **extracted.to_dict(),
                "source": "email_processing",
                "processed_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        await self._memory.store_summary(summary)
        logger.debug(
            "email=%s priority=%s action=%s categories=%s",
            message.id,
            summary.priority.value,
            summary.action_required,
            ",".join(summary.categories),
        )
        return summary

    async def draft_response(
        self,
        message: Message,
        context: DraftContext | None = None,
    ) -> Draft:
        """Generate a reply Draft for ``message``.

        History comes from ``context`` when given, otherwise from the memory
        store.  Either way it is ordered by ``sent_at`` and excludes the
        message being answered.

        Raises:
            ValidationError: the sender could not be decoded, so there is
                no one to reply to.
        """
        if message.from_ == UNKNOWN_SENDER:
            raise ValidationError(f"Cannot reply to {message.id}: sender is unknown")
        context = context or DraftContext()
        history = list(context.conversation_history)
        if not history:
            history = await self._memory.get_conversation_history(message.thread_id)
        history = sorted((m for m in history if m.id != message.id), key=lambda m: m.sent_at)

        prompt = build_reply_prompt(message, history, context.additional_context)
        body = (await self._text.generate_text(prompt)).strip()

        draft = Draft(
            thread_id=message.thread_id or None,
            to=[message.from_],
            subject=reply_subject(message.subject),
            body_text=body,
            in_reply_to=message.id,
            references=reply_references(message),
        )
        await self._memory.update_status(message.id, MessageStatus.DRAFTED.value)
        logger.info("Drafted reply to %s (%d prior message(s))", message.id, len(history))
        return draft
