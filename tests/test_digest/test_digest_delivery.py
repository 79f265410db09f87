"""Tests for OutputConfig and the digest sinks."""

from datetime import datetime, timezone
from io import StringIO
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from rich.console import Console

from mailsweep.digest.delivery import (
    EmailSink,
    FileSink,
    OutputConfig,
    OutputRouter,
    TerminalSink,
)
from mailsweep.digest.report import DigestReport
from mailsweep.mail.types import Address, SendResult, SweepError

GENERATED = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def make_report() -> DigestReport:
    return DigestReport(errors=[SweepError("m1", "boom")], generated_at=GENERATED)


# ── OutputConfig ───────────────────────────────────────────────────────────────


class TestOutputConfig:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ("DIGEST_OUTPUT_TERMINAL", "DIGEST_OUTPUT_FILE", "DIGEST_OUTPUT_EMAIL",
                     "DIGEST_DIR", "DIGEST_EMAIL_TO"):
            monkeypatch.delenv(name, raising=False)
        config = OutputConfig.from_env()
        assert config.terminal is True
        assert config.file is False
        assert config.email_self is False
        assert config.digest_dir == Path("data/digests")

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DIGEST_OUTPUT_TERMINAL", "false")
        monkeypatch.setenv("DIGEST_OUTPUT_FILE", "TRUE")
        monkeypatch.setenv("DIGEST_OUTPUT_EMAIL", "true")
        monkeypatch.setenv("DIGEST_DIR", "/tmp/digests")
        monkeypatch.setenv("DIGEST_EMAIL_TO", "me@example.com")
        config = OutputConfig.from_env()
        assert (config.terminal, config.file, config.email_self) == (False, True, True)
        assert config.digest_dir == Path("/tmp/digests")
        assert config.email_recipient == "me@example.com"


# ── Sinks ──────────────────────────────────────────────────────────────────────


class TestTerminalSink:
    async def test_prints_panel(self) -> None:
        buffer = StringIO()
        await TerminalSink(Console(file=buffer, width=100)).deliver(make_report())
        output = buffer.getvalue()
        assert "Email Digest" in output
        assert "m1" in output


class TestFileSink:
    async def test_writes_dated_markdown_with_front_matter(self, tmp_path: Path) -> None:
        sink = FileSink(tmp_path / "digests")
        report = make_report()
        await sink.deliver(report)

        path = tmp_path / "digests" / "2026-03-02.md"
        assert sink.path_for(report) == path
        text = path.read_text(encoding="utf-8")
        assert text.startswith("---\ndate: 2026-03-02\n")
        assert "errors: 1\n" in text
        assert "# Email Digest" in text


class TestEmailSink:
    async def test_sends_rendered_report(self) -> None:
        sync = MagicMock()
        sync.send_email = AsyncMock(return_value=SendResult(success=True, message_id="s1"))
        report = make_report()
        await EmailSink(sync, "Me <me@example.com>").deliver(report)

        draft = sync.send_email.await_args.args[0]
        assert draft.to == [Address("me@example.com", "Me")]
        assert draft.subject == report.title
        assert draft.body_text == report.render()

    async def test_no_recipient_skips_send(self) -> None:
        sync = MagicMock()
        sync.send_email = AsyncMock()
        await EmailSink(sync, "").deliver(make_report())
        sync.send_email.assert_not_awaited()

    async def test_failed_send_does_not_raise(self) -> None:
        sync = MagicMock()
        sync.send_email = AsyncMock(return_value=SendResult(success=False, error="down"))
        await EmailSink(sync, "me@example.com").deliver(make_report())


# ── OutputRouter ───────────────────────────────────────────────────────────────


class TestOutputRouter:
    def test_builds_enabled_sinks(self, tmp_path: Path) -> None:
        config = OutputConfig(terminal=True, file=True, email_self=True, digest_dir=tmp_path,
                              email_recipient="me@example.com")
        router = OutputRouter(config, sync=MagicMock())
        assert [type(s) for s in router.sinks] == [TerminalSink, FileSink, EmailSink]

    def test_email_without_sync_is_skipped(self) -> None:
        router = OutputRouter(OutputConfig(terminal=False, email_self=True))
        assert router.sinks == []

    async def test_failing_sink_does_not_stop_others(self, tmp_path: Path) -> None:
        config = OutputConfig(terminal=False, file=True, email_self=True, digest_dir=tmp_path,
                              email_recipient="me@example.com")
        sync = MagicMock()
        sync.send_email = AsyncMock(side_effect=RuntimeError("smtp exploded"))
        router = OutputRouter(config, sync=sync)

        await router.deliver(make_report())

        assert (tmp_path / "2026-03-02.md").exists()
        sync.send_email.assert_awaited_once()
