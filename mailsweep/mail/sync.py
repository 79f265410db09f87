"""MailSyncService: paged, concurrent mailbox fetches and sweeps."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from mailsweep.mail.codec import encode_draft
from mailsweep.mail.errors import MailError, ValidationError
from mailsweep.mail.gmail_client import PROVIDER_PAGE_CAP, GmailClient
from mailsweep.mail.types import (
    Draft,
    Message,
    SendResult,
    SweepError,
    SweepOptions,
    SweepResult,
)
from mailsweep.processing.types import MessageStatus

if TYPE_CHECKING:
    from mailsweep.processing.pipeline import ProcessingPipeline
    from mailsweep.processing.types import DraftContext
    from mailsweep.storage.memory import EmailMemory

logger = logging.getLogger(__name__)

# Upper bound on ids per batchModify call.
_MODIFY_CHUNK = 1000


def _quote(value: str) -> str:
    value = value.strip().replace('"', "")
    return f'"{value}"' if any(c.isspace() for c in value) else value


def build_query(options: SweepOptions) -> str:
    """Translate SweepOptions into Gmail search syntax.

    >>> build_query(SweepOptions(unread_only=True, labels=["INBOX", "Work"]))
    'is:unread (label:INBOX OR label:Work)'
    """
    terms: list[str] = []
    if options.unread_only:
        terms.append("is:unread")
    labels = [label.strip().replace(" ", "-") for label in options.labels if label.strip()]
    if len(labels) == 1:
        terms.append(f"label:{labels[0]}")
    elif labels:
        terms.append("(" + " OR ".join(f"label:{label}" for label in labels) + ")")
    if options.sender:
        terms.append(f"from:{_quote(options.sender)}")
    if options.subject:
        terms.append(f"subject:({options.subject.strip()})")
    if options.after:
        terms.append(f"after:{int(options.after.timestamp())}")
    if options.before:
        terms.append(f"before:{int(options.before.timestamp())}")
    return " ".join(terms)


@dataclass
class FetchOutcome:
    """Messages fetched by one bounded pass, plus the ids that failed."""

    messages: list[Message] = field(default_factory=list)
    errors: list[SweepError] = field(default_factory=list)
    next_page_token: str | None = None


class MailSyncService:
    """Lists, fetches, sends and sweeps mail through a GmailClient.

    Each listing page is fetched as one concurrent wave of ``get_message``
    calls; the next page is requested only after the whole wave settles.
    A failure for one id is logged and reported, never fatal to the page.
    """

    def __init__(
        self,
        gmail: GmailClient,
        pipeline: ProcessingPipeline | None = None,
        memory: EmailMemory | None = None,
    ) -> None:
        self._gmail = gmail
        self._pipeline = pipeline
        self._memory = memory if memory is not None else (pipeline.memory if pipeline else None)

    # ── Fetching ───────────────────────────────────────────────────────────────

    async def fetch_emails(self, options: SweepOptions) -> list[Message]:
        """Return up to ``options.limit`` decoded messages matching ``options``.

        Raises:
            ValidationError: options are malformed.
            MailError: the first listing call failed.
        """
        outcome = await self.fetch_batch(options)
        return outcome.messages

    async def fetch_batch(self, options: SweepOptions) -> FetchOutcome:
        """Like ``fetch_emails`` but also reports failed ids and the resume token."""
        options.validate()
        query = build_query(options)
        page_cap = min(options.page_size or PROVIDER_PAGE_CAP, PROVIDER_PAGE_CAP)
        outcome = FetchOutcome()
        token = options.page_token
        pages = 0

        while len(outcome.messages) < options.limit:
            remaining = options.limit - len(outcome.messages)
            try:
                ids, next_token = await self._gmail.list_message_ids(
                    query=query,
                    max_results=min(remaining, page_cap),
                    page_token=token,
                    include_spam_trash=options.include_spam_trash,
                )
            except MailError:
                if pages == 0:
                    raise
                # Keep what earlier pages returned; the caller can resume from token.
                logger.error("Listing page %d failed; stopping early", pages + 1, exc_info=True)
                outcome.next_page_token = token
                return outcome
            pages += 1

            messages, errors = await self._fetch_wave(ids)
            outcome.messages.extend(messages)
            outcome.errors.extend(errors)
            token = next_token
            if not token:
                break

        outcome.next_page_token = token
        logger.info(
            "Fetched %d message(s) in %d page(s), %d failed (query=%r)",
            len(outcome.messages), pages, len(outcome.errors), query,
        )
        return outcome

    async def _fetch_wave(self, ids: Sequence[str]) -> tuple[list[Message], list[SweepError]]:
        results = await asyncio.gather(
            *(self._gmail.get_message(message_id) for message_id in ids),
            return_exceptions=True,
        )
        messages: list[Message] = []
        errors: list[SweepError] = []
        for message_id, result in zip(ids, results):
            if isinstance(result, Message):
                messages.append(result)
            elif isinstance(result, Exception):
                logger.warning("Failed to fetch message %s: %s", message_id, result)
                errors.append(SweepError(id=message_id, error=str(result) or type(result).__name__))
            else:
                raise result
        return messages, errors

    async def get_message(self, message_id: str) -> Message:
        """Fetch and decode one message by provider id."""
        if not message_id:
            raise ValidationError("message id must not be empty")
        return await self._gmail.get_message(message_id)

    # ── Writing ────────────────────────────────────────────────────────────────

    async def send_email(self, draft: Draft) -> SendResult:
        """Encode and send ``draft``.

        Transport failures are returned as ``SendResult(success=False)``.

        Raises:
            ValidationError: the draft has no recipients.
        """
        if not (draft.to or draft.cc or draft.bcc):
            raise ValidationError("draft has no recipients")

        raw = encode_draft(draft)
        try:
            data = await self._gmail.send_raw(raw, thread_id=draft.thread_id)
        except MailError as exc:
            logger.error("Failed to send %r: %s", draft.subject, exc)
            return SendResult(success=False, error=str(exc))

        result = SendResult(
            success=True,
            message_id=data.get("id"),
            thread_id=data.get("threadId") or draft.thread_id,
        )
        logger.info("Sent %r as %s", draft.subject, result.message_id)
        if draft.in_reply_to and self._memory is not None:
            await self._memory.update_status(draft.in_reply_to, MessageStatus.REPLIED.value)
        return result

    async def mark_as_read(self, message_ids: str | Sequence[str]) -> None:
        """Remove the UNREAD label from one id or a list of ids."""
        ids = [message_ids] if isinstance(message_ids, str) else list(message_ids)
        ids = list(dict.fromkeys(i for i in ids if i))
        for start in range(0, len(ids), _MODIFY_CHUNK):
            await self._gmail.mark_as_read(ids[start : start + _MODIFY_CHUNK])
        if ids:
            logger.info("Marked %d message(s) as read", len(ids))

    # ── Processing ─────────────────────────────────────────────────────────────

    async def perform_sweep(self, options: SweepOptions) -> SweepResult:
        """Fetch, then summarise each message.

        Fetch and summarisation failures are collected into ``errors``;
        ``processed_count`` counts successful summaries only.
        """
        pipeline = self._require_pipeline()
        outcome = await self.fetch_batch(options)
        result = SweepResult(errors=list(outcome.errors), next_page_token=outcome.next_page_token)

        for message in outcome.messages:
            try:
                summary = await pipeline.process_email(message)
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to process message %s: %s", message.id, exc, exc_info=True)
                result.errors.append(SweepError(id=message.id, error=str(exc) or type(exc).__name__))
                continue
            result.summaries.append(summary)

        result.processed_count = len(result.summaries)
        logger.info(
            "Sweep complete: processed=%d errors=%d", result.processed_count, len(result.errors)
        )
        return result

    async def draft_response(self, message: Message, context: DraftContext | None = None) -> Draft:
        """Generate a reply draft via the processing pipeline."""
        return await self._require_pipeline().draft_response(message, context)

    def _require_pipeline(self) -> ProcessingPipeline:
        if self._pipeline is None:
            raise MailError("MailSyncService was built without a ProcessingPipeline")
        return self._pipeline
