"""SQLite memory store: messages, summaries and per-message status."""

from __future__ import annotations

import logging
import os
import sqlite3
from pathlib import Path

from mailsweep.mail.types import Message
from mailsweep.processing.types import EmailSummary, MessageStatus
from mailsweep.storage.models import ALL_TABLES, EmailRow, SummaryRecord

logger = logging.getLogger(__name__)

_DEFAULT_DB_PATH = Path("data/mailsweep.db")

_EMAIL_COLUMNS = (
    "id, thread_id, subject, sender, sender_name, recipients, sent_at, body_text, "
    "body_html, attachments, labels, is_read, in_reply_to, refs, stored_at"
)


class EmailDatabase:
    """EmailMemory implementation on top of SQLite.

    Designed for single-threaded use from an async event loop.  The async
    methods call straight into sqlite3; personal mailbox volume keeps every
    statement fast enough not to matter.

    Usage::

        db = EmailDatabase.from_env()
        await db.store_email(message)
        history = await db.get_conversation_history(message.thread_id)
    """

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._path = Path(db_path)
        if str(self._path) != ":memory:":
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    @classmethod
    def from_env(cls) -> EmailDatabase:
        return cls(os.environ.get("MEMORY_DB_PATH", str(_DEFAULT_DB_PATH)))

    def close(self) -> None:
        """Close the underlying database connection."""
        self._conn.close()

    # ── EmailMemory ─────────────────────────────────────────────────────────────

    async def store_email(self, message: Message) -> None:
        """Upsert the message. Its status starts as ``received`` if it has none."""
        placeholders = ", ".join("?" * 14)
        with self._conn:
            self._conn.execute(
                f"""
                INSERT INTO emails
                    (id, thread_id, subject, sender, sender_name, recipients, sent_at,
                     body_text, body_html, attachments, labels, is_read, in_reply_to, refs)
                VALUES ({placeholders})
                ON CONFLICT(id) DO UPDATE SET
                    labels  = excluded.labels,
                    is_read = excluded.is_read
                """,
                EmailRow.params_for(message),
            )
            self._conn.execute(
                "INSERT OR IGNORE INTO statuses (email_id, status) VALUES (?, ?)",
                (message.id, MessageStatus.RECEIVED.value),
            )

    async def store_summary(self, summary: EmailSummary) -> None:
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO summaries
                    (email_id, summary, priority, action_required, categories, metadata)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(email_id) DO UPDATE SET
                    summary         = excluded.summary,
                    priority        = excluded.priority,
                    action_required = excluded.action_required,
                    categories      = excluded.categories,
                    metadata        = excluded.metadata,
                    processed_at    = datetime('now')
                """,
                SummaryRecord.params_for(summary),
            )
            self._set_status(summary.id, MessageStatus.SUMMARIZED.value)

    async def get_conversation_history(self, thread_id: str) -> list[Message]:
        """Return the thread's stored messages, oldest first."""
        rows = self._conn.execute(
            f"SELECT {_EMAIL_COLUMNS} FROM emails WHERE thread_id = ? ORDER BY sent_at, id",
            (thread_id,),
        ).fetchall()
        messages = [_email_row(r).to_message() for r in rows]
        # sent_at strings may carry different UTC offsets; sort on the parsed value.
        return sorted(messages, key=lambda m: m.sent_at)

    async def update_status(self, message_id: str, status: str) -> None:
        with self._conn:
            self._set_status(message_id, status)
        logger.debug("Status of %s -> %s", message_id, status)

    async def get_status(self, message_id: str) -> str | None:
        row = self._conn.execute(
            "SELECT status FROM statuses WHERE email_id = ?", (message_id,)
        ).fetchone()
        return row["status"] if row else None

    # ── Read API ────────────────────────────────────────────────────────────────

    def get_email_by_id(self, email_id: str) -> Message | None:
        """Return the stored message for email_id, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_EMAIL_COLUMNS} FROM emails WHERE id = ?", (email_id,)
        ).fetchone()
        return _email_row(row).to_message() if row else None

    def get_summary(self, email_id: str) -> SummaryRecord | None:
        row = self._conn.execute(
            "SELECT email_id, summary, priority, action_required, categories, metadata, "
            "processed_at FROM summaries WHERE email_id = ?",
            (email_id,),
        ).fetchone()
        if row is None:
            return None
        d = dict(row)
        d["action_required"] = bool(d["action_required"])
        return SummaryRecord(**d)

    def get_ids_with_status(self, status: str) -> set[str]:
        rows = self._conn.execute(
            "SELECT email_id FROM statuses WHERE status = ?", (status,)
        ).fetchall()
        return {row["email_id"] for row in rows}

    # ── Private ─────────────────────────────────────────────────────────────────

    def _create_tables(self) -> None:
        with self._conn:
            for ddl in ALL_TABLES:
                self._conn.execute(ddl)

    def _set_status(self, message_id: str, status: str) -> None:
        self._conn.execute(
            """
            INSERT INTO statuses (email_id, status) VALUES (?, ?)
            ON CONFLICT(email_id) DO UPDATE SET
                status     = excluded.status,
                updated_at = datetime('now')
            """,
            (message_id, status),
        )


def _email_row(row: sqlite3.Row) -> EmailRow:
    d = dict(row)
    d["is_read"] = bool(d["is_read"])
    return EmailRow(**d)
