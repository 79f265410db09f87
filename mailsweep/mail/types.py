"""Data types shared across the mail sync and codec modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from mailsweep.mail.errors import ValidationError

# Gmail system label that marks a message as unread.
UNREAD_LABEL = "UNREAD"

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


@dataclass(frozen=True)
class Address:
    """A single mailbox from an address header.

    ``email`` is stored lower-cased so addresses compare case-insensitively.
    """

    email: str
    display_name: str | None = None

    def __post_init__(self) -> None:
        if not self.email or not self.email.strip():
            raise ValidationError("Address email must be non-empty")
        object.__setattr__(self, "email", self.email.strip().lower())

    def __str__(self) -> str:
        if self.display_name:
            return f"{self.display_name} <{self.email}>"
        return self.email


@dataclass(frozen=True)
class Attachment:
    """A filename-bearing leaf part of a decoded message."""

    filename: str
    mime_type: str
    size_bytes: int
    content: bytes = field(repr=False)
    content_id: str | None = None


@dataclass(frozen=True)
class MessagePart:
    """One node of a wire payload tree.

    Leaf nodes carry ``data`` (base64url text); multipart nodes carry
    ``parts``.  Built from the provider JSON by ``MessagePart.from_wire``.
    """

    mime_type: str = ""
    filename: str = ""
    headers: tuple[tuple[str, str], ...] = ()
    data: str | None = None
    size: int | None = None
    parts: tuple[MessagePart, ...] = ()

    @property
    def is_multipart(self) -> bool:
        return self.mime_type.lower().startswith("multipart/")

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup; first match wins."""
        wanted = name.lower()
        for key, value in self.headers:
            if key.lower() == wanted:
                return value
        return None

    @classmethod
    def from_wire(cls, node: dict[str, Any]) -> MessagePart:
        body = node.get("body") or {}
        raw_size = body.get("size")
        return cls(
            mime_type=str(node.get("mimeType") or ""),
            filename=str(node.get("filename") or ""),
            headers=_header_pairs(node.get("headers")),
            data=body.get("data") or None,
            size=int(raw_size) if isinstance(raw_size, int) and raw_size > 0 else None,
            parts=tuple(
                cls.from_wire(child)
                for child in node.get("parts") or []
                if isinstance(child, dict)
            ),
        )


def _header_pairs(raw: Any) -> tuple[tuple[str, str], ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(
        (str(h["name"]), str(h.get("value") or ""))
        for h in raw
        if isinstance(h, dict) and h.get("name")
    )


@dataclass(frozen=True)
class Message:
    """A fully decoded provider message."""

    id: str
    thread_id: str
    subject: str
    from_: Address
    sent_at: datetime = _EPOCH
    to: list[Address] = field(default_factory=list)
    cc: list[Address] = field(default_factory=list)
    bcc: list[Address] = field(default_factory=list)
    body_text: str | None = None
    body_html: str | None = None
    attachments: list[Attachment] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)
    is_read: bool = True
    message_id_header: str | None = None
    in_reply_to: str | None = None
    references: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Draft:
    """An outgoing message awaiting send.

    When ``in_reply_to`` is set, ``references`` must contain it.
    """

    to: list[Address]
    subject: str
    thread_id: str | None = None
    cc: list[Address] = field(default_factory=list)
    bcc: list[Address] = field(default_factory=list)
    body_text: str | None = None
    body_html: str | None = None
    in_reply_to: str | None = None
    references: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.in_reply_to and self.in_reply_to not in self.references:
            raise ValidationError(
                f"Draft references must include in_reply_to {self.in_reply_to!r}"
            )


@dataclass(frozen=True)
class SweepOptions:
    """Filter and paging parameters for a mailbox query."""

    unread_only: bool = False
    labels: list[str] = field(default_factory=list)
    sender: str | None = None
    subject: str | None = None
    after: datetime | None = None
    before: datetime | None = None
    page_size: int | None = None
    limit: int = 50
    page_token: str | None = None
    include_spam_trash: bool = False

    def validate(self) -> None:
        """Raise ValidationError for options the provider would reject."""
        if self.limit <= 0:
            raise ValidationError(f"limit must be positive, got {self.limit}")
        if self.page_size is not None and self.page_size <= 0:
            raise ValidationError(f"page_size must be positive, got {self.page_size}")
        if self.after and self.before and self.after >= self.before:
            raise ValidationError("after must be earlier than before")


@dataclass(frozen=True)
class SweepError:
    """A per-message failure captured during a sweep or digest run."""

    id: str
    error: str


@dataclass
class SweepResult:
    """Outcome of ``MailSyncService.perform_sweep``."""

    processed_count: int = 0
    summaries: list[Any] = field(default_factory=list)  # list[EmailSummary]
    errors: list[SweepError] = field(default_factory=list)
    next_page_token: str | None = None


@dataclass(frozen=True)
class SendResult:
    """Outcome of ``send_email``; failures are reported, not raised."""

    success: bool
    message_id: str | None = None
    thread_id: str | None = None
    error: str | None = None
