"""Digest report model and markdown rendering."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from mailsweep.mail.codec import NO_CONTENT
from mailsweep.mail.types import Address, Draft, SweepError
from mailsweep.processing.types import EmailSummary


def _name(address: Address) -> str:
    return address.display_name or address.email


@dataclass(frozen=True)
class DraftEntry:
    summary: EmailSummary
    draft: Draft


@dataclass
class DigestReport:
    """Everything one digest run produced."""

    summaries: list[EmailSummary] = field(default_factory=list)
    drafts: list[DraftEntry] = field(default_factory=list)
    errors: list[SweepError] = field(default_factory=list)
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_seconds: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not (self.summaries or self.errors)

    @property
    def title(self) -> str:
        return f"Email Digest — {self.generated_at.date().isoformat()}"

    def render(self) -> str:
        """Render the report as markdown."""
        drafted = {entry.summary.id for entry in self.drafts}
        lines = [
            f"# {self.title}",
            f"**Generated at**: {self.generated_at.isoformat(timespec='seconds')}",
            "",
            "## Summary",
            f"- **New emails**: {len(self.summaries)}",
            f"- **Drafts created**: {len(self.drafts)}",
            f"- **Errors**: {len(self.errors)}",
            "",
        ]

        if self.summaries:
            lines += ["## New Emails", ""]
            for index, summary in enumerate(self.summaries, 1):
                marker = " (draft)" if summary.id in drafted else ""
                lines += [
                    f"### {index}. {summary.subject}{marker}",
                    f"- **From**: {_name(summary.from_)}",
                    f"- **Date**: {summary.sent_at.isoformat(timespec='minutes')}",
                    f"- **Priority**: {summary.priority.value.upper()}",
                    f"- **Action required**: {'yes' if summary.action_required else 'no'}",
                    f"- **Categories**: {', '.join(summary.categories) or 'None'}",
                    f"- **Summary**: {summary.summary}",
                    "",
                ]

        if self.drafts:
            lines += ["## Draft Responses", ""]
            for index, entry in enumerate(self.drafts, 1):
                lines += [
                    f"### {index}. {entry.draft.subject}",
                    f"**To**: {', '.join(_name(a) for a in entry.draft.to)}",
                    "**Draft**:",
                    "```",
                    entry.draft.body_text or entry.draft.body_html or NO_CONTENT,
                    "```",
                    "",
                ]

        if self.errors:
            lines += ["## Processing Errors", ""]
            for index, error in enumerate(self.errors, 1):
                lines += [
                    f"{index}. **Email ID**: {error.id}",
                    f"   **Error**: {error.error}",
                    "",
                ]

        return "\n".join(lines).rstrip() + "\n"
