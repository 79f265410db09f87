"""Digest delivery sinks: terminal, markdown file and email to self."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel

from mailsweep.digest.report import DigestReport
from mailsweep.mail.codec import parse_address_list
from mailsweep.mail.types import Draft

if TYPE_CHECKING:
    from mailsweep.mail.sync import MailSyncService

logger = logging.getLogger(__name__)


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() == "true"


@dataclass
class OutputConfig:
    """Controls where the rendered digest is delivered."""

    terminal: bool = True
    file: bool = False
    email_self: bool = False
    digest_dir: Path = field(default_factory=lambda: Path("data/digests"))
    email_recipient: str = ""

    @classmethod
    def from_env(cls) -> OutputConfig:
        """Build OutputConfig from DIGEST_* environment variables."""
        return cls(
            terminal=_flag("DIGEST_OUTPUT_TERMINAL", "true"),
            file=_flag("DIGEST_OUTPUT_FILE", "false"),
            email_self=_flag("DIGEST_OUTPUT_EMAIL", "false"),
            digest_dir=Path(os.environ.get("DIGEST_DIR", "data/digests")),
            email_recipient=os.environ.get("DIGEST_EMAIL_TO", ""),
        )


@runtime_checkable
class DigestSink(Protocol):
    async def deliver(self, report: DigestReport) -> None: ...


class TerminalSink:
    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console(width=120)

    async def deliver(self, report: DigestReport) -> None:
        self._console.print(
            Panel(
                Markdown(report.render()),
                title=f"[bold]{report.title}[/bold]",
                border_style="green",
            )
        )


class FileSink:
    """Writes ``<digest_dir>/YYYY-MM-DD.md`` with YAML front-matter."""

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    def path_for(self, report: DigestReport) -> Path:
        return self._directory / f"{report.generated_at.date().isoformat()}.md"

    async def deliver(self, report: DigestReport) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(report)
        header = (
            "---\n"
            f"date: {report.generated_at.date().isoformat()}\n"
            f"generated_at: {report.generated_at.isoformat(timespec='seconds')}\n"
            f"emails: {len(report.summaries)}\n"
            f"drafts: {len(report.drafts)}\n"
            f"errors: {len(report.errors)}\n"
            "---\n\n"
        )
        path.write_text(header + report.render(), encoding="utf-8")
        logger.info("Digest written to %s", path)


class EmailSink:
    """Sends the rendered digest through MailSyncService.send_email."""

    def __init__(self, sync: MailSyncService, recipient: str) -> None:
        self._sync = sync
        self._recipients = parse_address_list(recipient)

    async def deliver(self, report: DigestReport) -> None:
        if not self._recipients:
            logger.warning("Digest email requested but DIGEST_EMAIL_TO is empty; skipping")
            return
        result = await self._sync.send_email(
            Draft(to=list(self._recipients), subject=report.title, body_text=report.render())
        )
        if not result.success:
            logger.error("Failed to email digest: %s", result.error)
        else:
            logger.info("Digest emailed to %s", ", ".join(a.email for a in self._recipients))


class OutputRouter:
    """Delivers a report to every sink enabled in OutputConfig.

    A failing sink is logged; the remaining sinks still run.
    """

    def __init__(self, config: OutputConfig, sync: MailSyncService | None = None) -> None:
        self._sinks: list[DigestSink] = []
        if config.terminal:
            self._sinks.append(TerminalSink())
        if config.file:
            self._sinks.append(FileSink(config.digest_dir))
        if config.email_self:
            if sync is None:
                logger.warning("Digest email output enabled without a mail service; skipping")
            else:
                self._sinks.append(EmailSink(sync, config.email_recipient))

    @property
    def sinks(self) -> list[DigestSink]:
        return list(self._sinks)

    async def deliver(self, report: DigestReport) -> None:
        for sink in self._sinks:
            try:
                await sink.deliver(report)
            except Exception as exc:  # noqa: BLE001
                logger.error("Digest sink %s failed: %s", type(sink).__name__, exc, exc_info=True)