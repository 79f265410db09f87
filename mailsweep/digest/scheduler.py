"""DigestScheduler: periodic fetch → summarise → draft → report runs on APScheduler."""

from __future__ import annotations

import logging
import os
import time
from enum import Enum
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from mailsweep.agent.notifications import NotificationChannel, NotificationType
from mailsweep.digest.delivery import DigestSink, OutputConfig, OutputRouter
from mailsweep.digest.report import DigestReport, DraftEntry
from mailsweep.mail.types import SweepError, SweepOptions
from mailsweep.processing.types import Category, DraftContext, EmailSummary, Priority

if TYPE_CHECKING:
    from mailsweep.mail.sync import MailSyncService
    from mailsweep.processing.pipeline import ProcessingPipeline

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULE = "0 9 * * *"
DEFAULT_BATCH_SIZE = 50
_JOB_ID = "mailsweep-digest"
_DRAFT_CONTEXT = "Generated as part of the scheduled email digest."


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


def requires_response(summary: EmailSummary) -> bool:
    """Digest policy for which summaries get a reply draft."""
    if summary.action_required or summary.priority is Priority.HIGH:
        return True
    return summary.priority is Priority.MEDIUM and Category.ACTION_ITEM.value in summary.categories


def build_trigger(schedule: str) -> CronTrigger:
    """Parse a crontab expression, falling back to the default schedule."""
    try:
        return CronTrigger.from_crontab(schedule)
    except ValueError:
        logger.warning("Invalid DIGEST_SCHEDULE %r; defaulting to %r", schedule, DEFAULT_SCHEDULE)
        return CronTrigger.from_crontab(DEFAULT_SCHEDULE)


class DigestScheduler:
    """Runs a digest on a cron schedule.

    IDLE → RUNNING on ``start()``, back to IDLE on ``stop()``.  A trigger that
    fires while a run is still in progress is skipped, and a failed run is
    logged without affecting later triggers.

    Usage::

        digest = DigestScheduler(sync, pipeline, OutputRouter(OutputConfig.from_env()))
        await digest.start()
        ...
        digest.stop()
    """

    def __init__(
        self,
        sync: MailSyncService,
        pipeline: ProcessingPipeline,
        sink: DigestSink,
        *,
        schedule: str = DEFAULT_SCHEDULE,
        batch_size: int = DEFAULT_BATCH_SIZE,
        notifications: NotificationChannel | None = None,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._sync = sync
        self._pipeline = pipeline
        self._sink = sink
        self.schedule = schedule
        self.batch_size = batch_size
        self._notifications = notifications
        self._scheduler = scheduler or AsyncIOScheduler()
        self._state = SchedulerState.IDLE
        self._in_progress = False

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running_digest(self) -> bool:
        return self._in_progress

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def start(self, run_immediately: bool = True) -> None:
        """Register the cron job and start the scheduler; optionally run once now."""
        if self._state is SchedulerState.RUNNING:
            logger.warning("Digest scheduler is already running")
            return
        self._state = SchedulerState.RUNNING
        self._scheduler.add_job(
            self._on_trigger,
            build_trigger(self.schedule),
            id=_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if not self._scheduler.running:
            self._scheduler.start()
        logger.info("Digest scheduled with %r (batch size %d)", self.schedule, self.batch_size)
        if run_immediately:
            await self.run_digest()

    def stop(self) -> None:
        if self._state is SchedulerState.IDLE:
            return
        self._state = SchedulerState.IDLE
        if self._scheduler.get_job(_JOB_ID) is not None:
            self._scheduler.remove_job(_JOB_ID)
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("Digest scheduler stopped")

    async def _on_trigger(self) -> None:
        if self._state is not SchedulerState.RUNNING:
            return
        await self.run_digest()

    # ── Run ────────────────────────────────────────────────────────────────────

    async def run_digest(self) -> DigestReport | None:
        """Run one digest now.

        Returns the report, or None when the run was skipped (another run in
        progress) or failed.  An empty report is returned without being
        delivered.  Never raises.
        """
        if self._in_progress:
            logger.info("Digest already in progress; skipping this trigger")
            return None
        self._in_progress = True
        try:
            return await self._run()
        except Exception as exc:  # noqa: BLE001
            logger.error("Digest run failed: %s", exc, exc_info=True)
            await self._notify(NotificationType.ERROR, "Digest failed", str(exc))
            return None
        finally:
            self._in_progress = False

    async def _run(self) -> DigestReport:
        started = time.monotonic()
        options = SweepOptions(unread_only=True, labels=["INBOX"], limit=self.batch_size)
        outcome = await self._sync.fetch_batch(options)
        report = DigestReport(errors=list(outcome.errors))
        logger.info("Digest found %d new email(s)", len(outcome.messages))

        if not outcome.messages and not outcome.errors:
            logger.info("No new emails to digest")
            return report

        by_id = {message.id: message for message in outcome.messages}
        for message in outcome.messages:
            try:
                report.summaries.append(await self._pipeline.process_email(message))
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to summarise %s: %s", message.id, exc)
                report.errors.append(SweepError(id=message.id, error=str(exc)))

        context = DraftContext(additional_context=_DRAFT_CONTEXT)
        for summary in report.summaries:
            if not requires_response(summary):
                continue
            try:
                draft = await self._pipeline.draft_response(by_id[summary.id], context)
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to draft a reply to %s: %s", summary.id, exc)
                report.errors.append(
                    SweepError(id=summary.id, error=f"Failed to create draft: {exc}")
                )
                continue
            report.drafts.append(DraftEntry(summary=summary, draft=draft))

        report.duration_seconds = time.monotonic() - started
        await self._sink.deliver(report)
        logger.info(
            "Digest completed in %.1fs: processed=%d drafts=%d errors=%d",
            report.duration_seconds,
            len(report.summaries),
            len(report.drafts),
            len(report.errors),
        )
        await self._notify(
            NotificationType.DIGEST_READY,
            report.title,
            f"{len(report.summaries)} email(s), {len(report.drafts)} draft(s)",
            emails=len(report.summaries),
            drafts=len(report.drafts),
            errors=len(report.errors),
        )
        return report

    async def _notify(self, type: NotificationType, title: str, message: str, **data: object) -> None:
        if self._notifications is not None:
            await self._notifications.notify(type, title, message, **data)


def create_digest_scheduler(
    sync: MailSyncService,
    pipeline: ProcessingPipeline,
    output_config: OutputConfig | None = None,
    notifications: NotificationChannel | None = None,
) -> DigestScheduler:
    """Return a DigestScheduler configured from DIGEST_* environment variables.

    The caller is responsible for ``start()`` and ``stop()``.
    """
    try:
        batch_size = int(os.environ.get("DIGEST_BATCH_SIZE", DEFAULT_BATCH_SIZE))
    except ValueError:
        logger.warning("Invalid DIGEST_BATCH_SIZE; defaulting to %d", DEFAULT_BATCH_SIZE)
        batch_size = DEFAULT_BATCH_SIZE
    if batch_size < 1:
        batch_size = DEFAULT_BATCH_SIZE
    router = OutputRouter(output_config or OutputConfig.from_env(), sync=sync)
    return DigestScheduler(
        sync,
        pipeline,
        router,
        schedule=os.environ.get("DIGEST_SCHEDULE", DEFAULT_SCHEDULE),
        batch_size=batch_size,
        notifications=notifications,
    )
