"""Tests for DigestReport rendering."""

from datetime import datetime, timezone

from mailsweep.digest.report import DigestReport, DraftEntry
from mailsweep.mail.types import Address, Draft, SweepError
from mailsweep.processing.types import EmailSummary, Priority

GENERATED = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def make_summary(id: str = "m1", **kwargs: object) -> EmailSummary:
    defaults: dict[str, object] = dict(
        id=id,
        thread_id=f"thread_{id}",
        subject="Q2 budget review",
        from_=Address("alice@example.com", "Alice Example"),
        sent_at=datetime(2026, 3, 1, 17, 30, tzinfo=timezone.utc),
        summary="Alice needs the budget by Friday.",
        action_required=True,
        priority=Priority.HIGH,
        categories=["document", "important"],
    )
    return EmailSummary(**{**defaults, **kwargs})  # type: ignore[arg-type]


def make_draft() -> Draft:
    return Draft(
        to=[Address("alice@example.com", "Alice Example")],
        subject="Re: Q2 budget review",
        body_text="Hi Alice,\n\nWill do.\n\nBest",
        in_reply_to="m1",
        references=["m1"],
    )


class TestDigestReport:
    def test_empty_report(self) -> None:
        report = DigestReport(generated_at=GENERATED)
        assert report.is_empty
        text = report.render()
        assert "- **New emails**: 0" in text
        assert "## New Emails" not in text
        assert "## Draft Responses" not in text

    def test_errors_alone_are_not_empty(self) -> None:
        assert not DigestReport(errors=[SweepError("m9", "boom")]).is_empty

    def test_title_uses_date(self) -> None:
        assert DigestReport(generated_at=GENERATED).title.endswith("2026-03-02")

    def test_renders_all_sections(self) -> None:
        summary = make_summary()
        report = DigestReport(
            summaries=[summary, make_summary("m2", subject="Lunch", priority=Priority.LOW,
                                             action_required=False, categories=[])],
            drafts=[DraftEntry(summary=summary, draft=make_draft())],
            errors=[SweepError("m3", "fetch failed")],
            generated_at=GENERATED,
        )
        text = report.render()

        assert text.startswith(f"# {report.title}")
        assert "- **New emails**: 2" in text
        assert "- **Drafts created**: 1" in text
        assert "- **Errors**: 1" in text
        assert "### 1. Q2 budget review (draft)" in text
        assert "### 2. Lunch\n" in text
        assert "- **From**: Alice Example" in text
        assert "- **Priority**: HIGH" in text
        assert "- **Categories**: None" in text
        assert "### 1. Re: Q2 budget review" in text
        assert "Will do." in text
        assert "1. **Email ID**: m3" in text
        assert "**Error**: fetch failed" in text

    def test_sections_in_order(self) -> None:
        summary = make_summary()
        text = DigestReport(
            summaries=[summary],
            drafts=[DraftEntry(summary=summary, draft=make_draft())],
            errors=[SweepError("m3", "x")],
        ).render()
        positions = [text.index(h) for h in
                     ("## Summary", "## New Emails", "## Draft Responses", "## Processing Errors")]
        assert positions == sorted(positions)
