"""Core agent loop: polls for unread mail, summarises, drafts and (optionally) replies."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from mailsweep.agent.notifications import NotificationChannel, NotificationType
from mailsweep.mail.codec import UNKNOWN_SENDER
from mailsweep.mail.types import Message, SweepOptions

if TYPE_CHECKING:
    from mailsweep.mail.sync import MailSyncService
    from mailsweep.processing.pipeline import ProcessingPipeline

logger = logging.getLogger(__name__)

# Backoff: 2^attempt seconds, capped at 5 minutes
_MAX_BACKOFF_SECONDS = 300

# Ids remembered between polls; the oldest are forgotten first.
_PROCESSED_ID_LIMIT = 5000


def _env_int(name: str, default: int) -> int:
    try:
        value = int(os.environ.get(name, default))
    except ValueError:
        logger.warning("Invalid %s; defaulting to %d", name, default)
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class WatcherConfig:
    poll_interval: int = 300
    max_emails_per_check: int = 10
    auto_respond: bool = False

    @classmethod
    def from_env(cls) -> WatcherConfig:
        return cls(
            poll_interval=_env_int("POLL_INTERVAL_SECONDS", 300),
            max_emails_per_check=_env_int("MAX_EMAILS_PER_CHECK", 10),
            auto_respond=os.environ.get("AUTO_RESPOND", "false").strip().lower() == "true",
        )


class RecentIds:
    """A set of message ids that forgets the oldest once ``limit`` is reached."""

    def __init__(self, limit: int = _PROCESSED_ID_LIMIT) -> None:
        self._order: deque[str] = deque()
        self._ids: set[str] = set()
        self._limit = limit

    def add(self, message_id: str) -> None:
        if message_id in self._ids:
            return
        self._order.append(message_id)
        self._ids.add(message_id)
        while len(self._order) > self._limit:
            self._ids.discard(self._order.popleft())

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)


@dataclass
class SweepMetrics:
    """Running counters for the watcher."""

    polls: int = 0
    processed: int = 0
    drafts: int = 0
    sent: int = 0
    errors: int = 0
    processing_seconds: float = 0.0
    last_poll_at: datetime | None = None

    @property
    def average_processing_seconds(self) -> float:
        return self.processing_seconds / self.processed if self.processed else 0.0


# ── Watcher ────────────────────────────────────────────────────────────────────


class SweepWatcher:
    """Polls for unread inbox mail and handles each new message once.

    For every new message: summarise it, draft a reply when action is
    required (and send it when ``auto_respond`` is on), then mark it read.
    Loop-level failures (listing errors, open circuit) back off with
    ``2**attempt`` seconds, capped at five minutes.

    Usage::

        watcher = SweepWatcher(services.sync, services.pipeline)
        await watcher.run()
    """

    def __init__(
        self,
        sync: MailSyncService,
        pipeline: ProcessingPipeline,
        config: WatcherConfig | None = None,
        notifications: NotificationChannel | None = None,
    ) -> None:
        self._sync = sync
        self._pipeline = pipeline
        self._config = config or WatcherConfig.from_env()
        self._notifications = notifications
        self._processed_ids = RecentIds()
        self._stop_event = asyncio.Event()
        self.metrics = SweepMetrics()

    def stop(self) -> None:
        """Signal the watcher to finish the current poll and shut down cleanly."""
        logger.info("Shutdown requested; finishing current poll then stopping")
        self._stop_event.set()

    async def run(self) -> None:
        """Poll until stop() is called, backing off after failed polls."""
        attempt = 0
        while not self._stop_event.is_set():
            try:
                await self.poll_once()
            except Exception as exc:  # noqa: BLE001
                if self._stop_event.is_set():
                    break
                attempt += 1
                delay = min(2**attempt, _MAX_BACKOFF_SECONDS)
                logger.error(
                    "Poll failed (attempt %d): %s; retrying in %ds", attempt, exc, delay,
                    exc_info=True,
                )
                await self._notify(NotificationType.ERROR, "Mail check failed", str(exc))
                await self._interruptible_sleep(delay)
                continue
            attempt = 0
            await self._interruptible_sleep(self._config.poll_interval)

        logger.info("Watcher stopped")

    async def poll_once(self) -> int:
        """Handle all new unread messages once. Returns how many were handled."""
        self.metrics.polls += 1
        self.metrics.last_poll_at = datetime.now(timezone.utc)
        outcome = await self._sync.fetch_batch(
            SweepOptions(unread_only=True, labels=["INBOX"], limit=self._config.max_emails_per_check)
        )
        for error in outcome.errors:
            self.metrics.errors += 1
            logger.error("Could not fetch %s: %s", error.id, error.error)

        new = [m for m in outcome.messages if m.id not in self._processed_ids]
        if not new:
            logger.debug("Poll: 0 new emails (%d unread fetched)", len(outcome.messages))
            return 0

        logger.info("Poll: %d new email(s) to process", len(new))
        for message in new:
            try:
                await self._handle(message)
            except Exception as exc:  # noqa: BLE001
                self.metrics.errors += 1
                logger.error("Failed to handle email %s: %s", message.id, exc, exc_info=True)
                await self._notify(
                    NotificationType.ERROR,
                    f"Failed to process: {message.subject}",
                    str(exc),
                    email_id=message.id,
                )
            finally:
                # Seen either way so a poison message isn't retried every poll.
                self._processed_ids.add(message.id)
        return len(new)

    # ── Internal ───────────────────────────────────────────────────────────────

    async def _handle(self, message: Message) -> None:
        started = time.monotonic()
        summary = await self._pipeline.process_email(message)
        self.metrics.processed += 1

        if summary.action_required:
            await self._notify(
                NotificationType.ACTION_REQUIRED,
                f"Action required: {summary.subject}",
                summary.summary,
                email_id=message.id,
                thread_id=message.thread_id,
                priority=summary.priority.value,
                categories=summary.categories,
            )
            if message.from_ == UNKNOWN_SENDER:
                logger.warning("Not drafting a reply to %s: sender is unknown", message.id)
            else:
                await self._draft_reply(message)

        await self._sync.mark_as_read(message.id)
        self.metrics.processing_seconds += time.monotonic() - started

    async def _draft_reply(self, message: Message) -> None:
        draft = await self._pipeline.draft_response(message)
        self.metrics.drafts += 1
        await self._notify(
            NotificationType.DRAFT_READY,
            f"Draft ready: {draft.subject}",
            draft.body_text or "",
            email_id=message.id,
            thread_id=message.thread_id,
        )
        if self._config.auto_respond:
            result = await self._sync.send_email(draft)
            if result.success:
                self.metrics.sent += 1
            else:
                self.metrics.errors += 1
                logger.error("Auto-reply to %s failed: %s", message.id, result.error)

    async def _notify(self, type: NotificationType, title: str, message: str, **data: object) -> None:
        if self._notifications is not None:
            await self._notifications.notify(type, title, message, **data)

    async def _interruptible_sleep(self, seconds: float) -> None:
        """Sleep for `seconds` but wake immediately if stop() is called."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


# ── Entry point ────────────────────────────────────────────────────────────────


def configure_logging(default_level: str = "INFO") -> None:
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", default_level).upper(),
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def main() -> None:
    """Start the agent (watcher + digest scheduler). Entry point for `mailsweep-agent`."""
    load_dotenv()
    configure_logging()

    try:
        asyncio.run(_amain())
    except KeyboardInterrupt:
        # Ctrl+C on Windows (no add_signal_handler) arrives here
        logger.info("Interrupted; goodbye")


async def _amain() -> None:
    """Async entry point: wire services and signal handlers, run until stopped."""
    from mailsweep.agent.services import open_services
    from mailsweep.digest.scheduler import create_digest_scheduler

    async with open_services() as services:
        services.notifications.subscribe(
            lambda n: logger.info("[%s] %s", n.type.value, n.title)
        )
        digest = create_digest_scheduler(
            services.sync, services.pipeline, notifications=services.notifications
        )
        watcher = SweepWatcher(
            services.sync, services.pipeline, notifications=services.notifications
        )

        loop = asyncio.get_running_loop()
        try:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, watcher.stop)
        except (NotImplementedError, AttributeError):
            pass

        await digest.start(run_immediately=False)
        try:
            await watcher.run()
        finally:
            digest.stop()
