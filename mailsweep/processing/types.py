"""Types for the email processing pipeline."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from mailsweep.mail.types import Address

logger = logging.getLogger(__name__)


class Priority(str, Enum):
    """Triage priority. String values round-trip through JSON unchanged."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def parse(cls, value: object) -> Priority | None:
        """Case-insensitive lookup; None for anything that isn't a known priority."""
        if isinstance(value, Priority):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class Category(str, Enum):
    MEETING = "meeting"
    QUESTION = "question"
    ACTION_ITEM = "action_item"
    DOCUMENT = "document"
    NOTIFICATION = "notification"
    SOCIAL = "social"
    PURCHASE = "purchase"
    IMPORTANT = "important"


class MessageStatus(str, Enum):
    """Lifecycle markers written to the memory store."""

    RECEIVED = "received"
    SUMMARIZED = "summarized"
    DRAFTED = "drafted"
    REPLIED = "replied"


# ── Extracted data ─────────────────────────────────────────────────────────────


def _str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None and str(v).strip()]
    return []


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


@dataclass(frozen=True)
class ExtractedData:
    """Structured data returned by the text-generation collaborator.

    Built with ``from_raw`` so that whatever the model returns becomes this
    known shape.  Keys that are not modelled explicitly are kept in ``extra``.
    """

    priority: Priority | None = None
    requires_action: bool = False
    action_items: list[str] = field(default_factory=list)
    next_steps: list[str] = field(default_factory=list)
    questions: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Any) -> ExtractedData:
        if isinstance(raw, ExtractedData):
            return raw
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError:
                logger.debug("Extracted data is not JSON; treating as free text")
                return cls(extra={"text": raw})
        if not isinstance(raw, dict):
            if raw is not None:
                logger.debug("Ignoring extracted data of type %s", type(raw).__name__)
            return cls()

        known = {
            "priority", "requiresAction", "requires_action", "actionItems", "action_items",
            "nextSteps", "next_steps", "questions", "categories",
        }
        return cls(
            priority=Priority.parse(raw.get("priority")),
            requires_action=_first(raw, "requiresAction", "requires_action") is True,
            action_items=_str_list(_first(raw, "actionItems", "action_items")),
            next_steps=_str_list(_first(raw, "nextSteps", "next_steps")),
            questions=_str_list(raw.get("questions")),
            categories=[c.strip().lower() for c in _str_list(raw.get("categories"))],
            extra={k: v for k, v in raw.items() if k not in known},
        )

    @property
    def is_empty(self) -> bool:
        return self == ExtractedData()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self.extra)
        if self.priority is not None:
            data["priority"] = self.priority.value
        if self.requires_action:
            data["requires_action"] = True
        for key in ("action_items", "next_steps", "questions", "categories"):
            value = getattr(self, key)
            if value:
                data[key] = value
        return data

    def serialized(self) -> str:
        """Lower-cased JSON text used for keyword matching. Empty if no data."""
        if self.is_empty:
            return ""
        return json.dumps(self.to_dict(), sort_keys=True, default=str).lower()


# ── Summary ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EmailSummary:
    """Derived view of one message produced by ProcessingPipeline.process_email."""

    id: str
    thread_id: str
    subject: str
    from_: Address
    sent_at: datetime
    summary: str
    action_required: bool
    priority: Priority
    categories: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DraftContext:
    """Optional inputs to draft generation."""

    conversation_history: list[Any] = field(default_factory=list)  # list[Message]
    additional_context: str | None = None
