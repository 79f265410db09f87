"""SQLite table schemas and typed row types for the memory store."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime

from mailsweep.mail.types import Address, Attachment, Message
from mailsweep.processing.types import EmailSummary, Priority

# ── DDL ────────────────────────────────────────────────────────────────────────

_CREATE_EMAILS = """
CREATE TABLE IF NOT EXISTS emails (
    id            TEXT PRIMARY KEY,
    thread_id     TEXT NOT NULL,
    subject       TEXT NOT NULL,
    sender        TEXT NOT NULL,
    sender_name   TEXT,
    recipients    TEXT NOT NULL DEFAULT '{}',
    sent_at       TEXT NOT NULL,
    body_text     TEXT,
    body_html     TEXT,
    attachments   TEXT NOT NULL DEFAULT '[]',
    labels        TEXT NOT NULL DEFAULT '[]',
    is_read       INTEGER NOT NULL DEFAULT 1,
    in_reply_to   TEXT,
    refs          TEXT NOT NULL DEFAULT '[]',
    stored_at     TEXT NOT NULL DEFAULT (datetime('now'))
)
"""

_CREATE_EMAILS_THREAD_INDEX = """
CREATE INDEX IF NOT EXISTS idx_emails_thread ON emails (thread_id, sent_at)
"""

_CREATE_SUMMARIES = """
CREATE TABLE IF NOT EXISTS summaries (
    email_id        TEXT PRIMARY KEY,
    summary         TEXT NOT NULL,
    priority        TEXT NOT NULL,
    action_required INTEGER NOT NULL DEFAULT 0,
    categories      TEXT NOT NULL DEFAULT '[]',
    metadata        TEXT NOT NULL DEFAULT '{}',
    processed_at    TEXT NOT NULL DEFAULT (datetime('now'))
)
"""

_CREATE_STATUSES = """
CREATE TABLE IF NOT EXISTS statuses (
    email_id    TEXT PRIMARY KEY,
    status      TEXT NOT NULL,
    updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
)
"""

#: All DDL statements in creation order.
ALL_TABLES: list[str] = [
    _CREATE_EMAILS,
    _CREATE_EMAILS_THREAD_INDEX,
    _CREATE_SUMMARIES,
    _CREATE_STATUSES,
]


def _addresses_to_json(addresses: list[Address]) -> list[list[str | None]]:
    return [[a.email, a.display_name] for a in addresses]


def _addresses_from_json(data: list[list[str | None]]) -> list[Address]:
    return [Address(email=str(email), display_name=name) for email, name in data]


@dataclass(frozen=True)
class EmailRow:
    """A full row from the emails table."""

    id: str
    thread_id: str
    subject: str
    sender: str
    sender_name: str | None
    recipients: str  # JSON: {"to": [...], "cc": [...], "bcc": [...]}
    sent_at: str  # ISO 8601
    body_text: str | None
    body_html: str | None
    attachments: str  # JSON-encoded attachment metadata, content not stored
    labels: str  # JSON-encoded list[str]
    is_read: bool
    in_reply_to: str | None
    refs: str  # JSON-encoded list[str]
    stored_at: str

    @classmethod
    def params_for(cls, message: Message) -> tuple[object, ...]:
        """Insert parameters for ``message`` in column order (minus stored_at)."""
        recipients = {
            "to": _addresses_to_json(message.to),
            "cc": _addresses_to_json(message.cc),
            "bcc": _addresses_to_json(message.bcc),
        }
        attachments = [
            {
                "filename": a.filename,
                "mime_type": a.mime_type,
                "size_bytes": a.size_bytes,
                "content_id": a.content_id,
            }
            for a in message.attachments
        ]
        return (
            message.id,
            message.thread_id,
            message.subject,
            message.from_.email,
            message.from_.display_name,
            json.dumps(recipients),
            message.sent_at.isoformat(),
            message.body_text,
            message.body_html,
            json.dumps(attachments),
            json.dumps(message.labels),
            int(message.is_read),
            message.in_reply_to,
            json.dumps(message.references),
        )

    def to_message(self) -> Message:
        recipients = json.loads(self.recipients)
        return Message(
            id=self.id,
            thread_id=self.thread_id,
            subject=self.subject,
            from_=Address(email=self.sender, display_name=self.sender_name),
            sent_at=datetime.fromisoformat(self.sent_at),
            to=_addresses_from_json(recipients.get("to", [])),
            cc=_addresses_from_json(recipients.get("cc", [])),
            bcc=_addresses_from_json(recipients.get("bcc", [])),
            body_text=self.body_text,
            body_html=self.body_html,
            attachments=[
                Attachment(
                    filename=a["filename"],
                    mime_type=a["mime_type"],
                    size_bytes=a["size_bytes"],
                    content=b"",
                    content_id=a.get("content_id"),
                )
                for a in json.loads(self.attachments)
            ],
            labels=json.loads(self.labels),
            is_read=bool(self.is_read),
            in_reply_to=self.in_reply_to,
            references=json.loads(self.refs),
        )


# ── Query result types ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SummaryRecord:
    """A row from the summaries table."""

    email_id: str
    summary: str
    priority: str
    action_required: bool
    categories: str  # JSON-encoded list[str]
    metadata: str  # JSON-encoded dict
    processed_at: str

    @classmethod
    def params_for(cls, summary: EmailSummary) -> tuple[object, ...]:
        return (
            summary.id,
            summary.summary,
            summary.priority.value,
            int(summary.action_required),
            json.dumps(summary.categories),
            json.dumps(summary.metadata, default=str),
        )

    @property
    def priority_value(self) -> Priority:
        return Priority.parse(self.priority) or Priority.MEDIUM
