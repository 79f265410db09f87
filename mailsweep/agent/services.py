"""Composition root: builds each service once and hands out references."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from mailsweep.agent.notifications import NotificationChannel
from mailsweep.mail.gmail_client import GmailClient, gmail_client
from mailsweep.mail.sync import MailSyncService
from mailsweep.processing.pipeline import ProcessingPipeline
from mailsweep.processing.text_service import AnthropicTextService, TextService
from mailsweep.storage.db import EmailDatabase
from mailsweep.storage.memory import EmailMemory

logger = logging.getLogger(__name__)


@dataclass
class Services:
    gmail: GmailClient
    sync: MailSyncService
    pipeline: ProcessingPipeline
    memory: EmailMemory
    notifications: NotificationChannel = field(default_factory=NotificationChannel)


@asynccontextmanager
async def open_services(
    *,
    memory: EmailMemory | None = None,
    text: TextService | None = None,
    notifications: NotificationChannel | None = None,
) -> AsyncIterator[Services]:
    """Open the Gmail client and wire the sync service, pipeline and memory store.

    Without an explicit ``memory`` the SQLite store at MEMORY_DB_PATH is
    opened and closed with the context.
    """
    db = EmailDatabase.from_env() if memory is None else None
    store: EmailMemory = memory if memory is not None else db  # type: ignore[assignment]
    try:
        async with gmail_client() as gmail:
            pipeline = ProcessingPipeline(text or AnthropicTextService(), store)
            sync = MailSyncService(gmail, pipeline, store)
            yield Services(
                gmail=gmail,
                sync=sync,
                pipeline=pipeline,
                memory=store,
                notifications=notifications or NotificationChannel(),
            )
    finally:
        if db is not None:
            db.close()
