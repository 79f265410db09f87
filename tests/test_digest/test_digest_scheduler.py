"""Tests for DigestScheduler — sync, pipeline and sink are mocked."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from apscheduler.triggers.cron import CronTrigger

from mailsweep.agent.notifications import NotificationChannel, NotificationType
from mailsweep.digest.delivery import OutputConfig, OutputRouter
from mailsweep.digest.scheduler import (
    DEFAULT_BATCH_SIZE,
    DigestScheduler,
    SchedulerState,
    build_trigger,
    create_digest_scheduler,
    requires_response,
)
from mailsweep.mail.sync import FetchOutcome
from mailsweep.mail.types import Address, Draft, SweepError
from mailsweep.processing.types import EmailSummary, Priority
from tests.factories import make_message


# ── Helpers ────────────────────────────────────────────────────────────────────


def make_summary(id: str, priority: Priority = Priority.MEDIUM, action: bool = False,
                 categories: list[str] | None = None) -> EmailSummary:
    message = make_message(id)
    return EmailSummary(
        id=id, thread_id=message.thread_id, subject=message.subject, from_=message.from_,
        sent_at=message.sent_at, summary="s", action_required=action, priority=priority,
        categories=categories or [],
    )


def make_draft(id: str) -> Draft:
    return Draft(to=[Address("alice@example.com")], subject="Re: x", body_text="ok",
                 in_reply_to=id, references=[id])


def make_digest(
    ids: list[str],
    summaries: dict[str, EmailSummary] | None = None,
    errors: list[SweepError] | None = None,
    notifications: NotificationChannel | None = None,
) -> tuple[DigestScheduler, MagicMock, MagicMock, MagicMock]:
    summaries = summaries or {}
    sync = MagicMock()
    sync.fetch_batch = AsyncMock(
        return_value=FetchOutcome(messages=[make_message(i) for i in ids], errors=errors or [])
    )
    pipeline = MagicMock()
    pipeline.process_email = AsyncMock(
        side_effect=lambda m: summaries.get(m.id) or make_summary(m.id)
    )
    pipeline.draft_response = AsyncMock(side_effect=lambda m, ctx=None: make_draft(m.id))
    sink = MagicMock()
    sink.deliver = AsyncMock()
    digest = DigestScheduler(sync, pipeline, sink, batch_size=10, notifications=notifications,
                             scheduler=MagicMock(running=False))
    return digest, sync, pipeline, sink


# ── Policy helpers ─────────────────────────────────────────────────────────────


class TestRequiresResponse:
    def test_action_required(self) -> None:
        assert requires_response(make_summary("a", Priority.LOW, action=True))

    def test_high_priority(self) -> None:
        assert requires_response(make_summary("a", Priority.HIGH))

    def test_medium_with_action_item(self) -> None:
        assert requires_response(make_summary("a", Priority.MEDIUM, categories=["action_item"]))

    def test_medium_without_action_item(self) -> None:
        assert not requires_response(make_summary("a", Priority.MEDIUM, categories=["social"]))

    def test_low_with_action_item(self) -> None:
        assert not requires_response(make_summary("a", Priority.LOW, categories=["action_item"]))


class TestBuildTrigger:
    def test_valid_crontab(self) -> None:
        fields = {f.name: str(f) for f in build_trigger("30 6 * * 1-5").fields}
        assert fields["hour"] == "6"
        assert fields["minute"] == "30"

    def test_invalid_falls_back_to_nine(self) -> None:
        trigger = build_trigger("whenever")
        assert isinstance(trigger, CronTrigger)
        fields = {f.name: str(f) for f in trigger.fields}
        assert fields["hour"] == "9"
        assert fields["minute"] == "0"


# ── run_digest ─────────────────────────────────────────────────────────────────


class TestRunDigest:
    async def test_fetches_unread_inbox_batch(self) -> None:
        digest, sync, _, _ = make_digest(["a"])
        await digest.run_digest()
        options = sync.fetch_batch.await_args.args[0]
        assert options.unread_only is True
        assert options.labels == ["INBOX"]
        assert options.limit == 10

    async def test_drafts_only_for_messages_needing_response(self) -> None:
        summaries = {
            "a": make_summary("a", Priority.HIGH),
            "b": make_summary("b", Priority.LOW),
            "c": make_summary("c", Priority.MEDIUM, categories=["action_item"]),
        }
        digest, _, pipeline, sink = make_digest(["a", "b", "c"], summaries)

        report = await digest.run_digest()

        assert report is not None
        assert [s.id for s in report.summaries] == ["a", "b", "c"]
        assert [d.summary.id for d in report.drafts] == ["a", "c"]
        drafted = [c.args[0].id for c in pipeline.draft_response.await_args_list]
        assert drafted == ["a", "c"]
        sink.deliver.assert_awaited_once_with(report)

    async def test_fetch_errors_are_reported(self) -> None:
        digest, _, _, sink = make_digest(["a"], errors=[SweepError("x", "fetch failed")])
        report = await digest.run_digest()
        assert report is not None
        assert report.errors == [SweepError("x", "fetch failed")]
        sink.deliver.assert_awaited_once()

    async def test_summary_and_draft_failures_are_collected(self) -> None:
        digest, _, pipeline, _ = make_digest(["a", "b"], {"b": make_summary("b", Priority.HIGH)})

        async def process(message):
            if message.id == "a":
                raise RuntimeError("model down")
            return make_summary("b", Priority.HIGH)

        pipeline.process_email = AsyncMock(side_effect=process)
        pipeline.draft_response = AsyncMock(side_effect=RuntimeError("no draft"))

        report = await digest.run_digest()

        assert report is not None
        assert [e.id for e in report.errors] == ["a", "b"]
        assert report.errors[1].error == "Failed to create draft: no draft"
        assert report.drafts == []

    async def test_empty_mailbox_is_not_delivered(self) -> None:
        digest, _, pipeline, sink = make_digest([])
        report = await digest.run_digest()
        assert report is not None and report.is_empty
        sink.deliver.assert_not_awaited()
        pipeline.process_email.assert_not_awaited()

    async def test_fetch_failure_returns_none_and_notifies(self) -> None:
        channel = NotificationChannel()
        digest, sync, _, sink = make_digest([], notifications=channel)
        sync.fetch_batch = AsyncMock(side_effect=RuntimeError("network down"))

        assert await digest.run_digest() is None
        sink.deliver.assert_not_awaited()
        assert [n.type for n in channel.history] == [NotificationType.ERROR]
        assert digest.is_running_digest is False

    async def test_notifies_digest_ready(self) -> None:
        channel = NotificationChannel()
        digest, _, _, _ = make_digest(["a"], notifications=channel)
        await digest.run_digest()
        (notification,) = channel.history
        assert notification.type is NotificationType.DIGEST_READY
        assert notification.data == {"emails": 1, "drafts": 0, "errors": 0}

    async def test_overlapping_run_is_skipped(self) -> None:
        digest, sync, _, _ = make_digest(["a"])
        release = asyncio.Event()
        original = sync.fetch_batch.return_value

        async def slow_fetch(options):
            await release.wait()
            return original

        sync.fetch_batch = AsyncMock(side_effect=slow_fetch)
        first = asyncio.create_task(digest.run_digest())
        await asyncio.sleep(0)
        assert digest.is_running_digest is True

        assert await digest.run_digest() is None
        release.set()
        assert await first is not None
        assert sync.fetch_batch.await_count == 1


# ── Lifecycle ──────────────────────────────────────────────────────────────────


class TestLifecycle:
    async def test_start_registers_single_instance_job(self) -> None:
        digest, sync, _, _ = make_digest([])
        scheduler = digest._scheduler

        await digest.start(run_immediately=False)

        assert digest.state is SchedulerState.RUNNING
        kwargs = scheduler.add_job.call_args.kwargs
        assert kwargs["max_instances"] == 1
        assert kwargs["coalesce"] is True
        scheduler.start.assert_called_once()
        sync.fetch_batch.assert_not_awaited()

    async def test_start_runs_immediately_by_default(self) -> None:
        digest, sync, _, _ = make_digest([])
        await digest.start()
        sync.fetch_batch.assert_awaited_once()

    async def test_stop_returns_to_idle(self) -> None:
        digest, _, _, _ = make_digest([])
        await digest.start(run_immediately=False)
        digest.stop()
        assert digest.state is SchedulerState.IDLE
        digest._scheduler.remove_job.assert_called_once()

    async def test_trigger_after_stop_does_nothing(self) -> None:
        digest, sync, _, _ = make_digest([])
        await digest._on_trigger()
        sync.fetch_batch.assert_not_awaited()

    async def test_real_scheduler_start_and_stop(self) -> None:
        digest, _, _, _ = make_digest([])
        digest._scheduler = create_digest_scheduler(
            MagicMock(), MagicMock(), OutputConfig(terminal=False)
        )._scheduler
        await digest.start(run_immediately=False)
        assert digest._scheduler.get_job("mailsweep-digest") is not None
        digest.stop()
        assert digest.state is SchedulerState.IDLE


class TestCreateDigestScheduler:
    def test_reads_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DIGEST_SCHEDULE", "15 7 * * *")
        monkeypatch.setenv("DIGEST_BATCH_SIZE", "25")
        digest = create_digest_scheduler(MagicMock(), MagicMock(), OutputConfig(terminal=False))
        assert digest.schedule == "15 7 * * *"
        assert digest.batch_size == 25
        assert isinstance(digest._sink, OutputRouter)

    @pytest.mark.parametrize("value", ["lots", "0"])
    def test_bad_batch_size_uses_default(self, monkeypatch: pytest.MonkeyPatch, value: str) -> None:
        monkeypatch.setenv("DIGEST_BATCH_SIZE", value)
        digest = create_digest_scheduler(MagicMock(), MagicMock(), OutputConfig(terminal=False))
        assert digest.batch_size == DEFAULT_BATCH_SIZE
