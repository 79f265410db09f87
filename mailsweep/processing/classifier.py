"""Deterministic triage rules over (summary text, extracted data).

No model calls happen here; every function is a pure keyword/regex test so
results are reproducible and cheap.
"""

from __future__ import annotations

import re
from typing import Union

from mailsweep.processing.types import Category, ExtractedData, Priority

Pattern = Union[str, "re.Pattern[str]"]

ACTION_KEYWORDS: tuple[str, ...] = (
    "urgent", "action required", "please respond", "follow up", "needs attention",
    "your input needed", "response requested", "please advise", "your feedback",
    "awaiting your", "deadline", "due by", "as soon as possible", "asap",
    "urgent action", "immediate attention",
)

QUESTION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(can you|could you|would you|please|kindly)\s+"
               r"(let me know|update me|provide|share|send)", re.I),
    re.compile(r"\b(when|what|where|why|how|who|is|are|can|could|would|will|do|does|did"
               r"|have|has|had)\s+(you|we|i|they)\b", re.I),
    re.compile(r"\?\s*$"),
)

HIGH_PRIORITY_KEYWORDS: tuple[str, ...] = (
    "urgent", "asap", "immediate attention", "critical", "important", "deadline",
    "due today", "time-sensitive", "high priority", "action required",
)

LOW_PRIORITY_KEYWORDS: tuple[str, ...] = (
    "when you have time", "no rush", "low priority", "not urgent",
    "at your convenience", "when possible", "fyi", "for your information",
)

CATEGORY_PATTERNS: dict[Category, tuple[Pattern, ...]] = {
    Category.MEETING: (
        "meeting", "calendar", "schedule", "appointment",
        re.compile(r"(let'?s|can we|set up|schedule|have) a (meeting|call)", re.I),
        re.compile(r"(discuss|talk|chat) (about|regarding)", re.I),
    ),
    Category.QUESTION: (
        "question", "?", "wondering", "curious", "not sure", "unsure",
        re.compile(r"can you (explain|clarify|help with)", re.I),
        re.compile(r"what (is|are|do|does|did|was|were|will|would)", re.I),
        re.compile(r"how (do|does|did|can|will|would)", re.I),
        re.compile(r"why (is|are|do|does|did|was|were|will|would)", re.I),
    ),
    Category.ACTION_ITEM: (
        "action item", "todo", "task", "next steps", "follow up", "please", "kindly",
        "request", "need you to", "would like you to",
    ),
    Category.DOCUMENT: (
        "document", "attachment", "file", "spreadsheet", "presentation", "report",
        "proposal", "contract", "agreement", "invoice",
    ),
    Category.NOTIFICATION: (
        "notification", "alert", "update", "reminder", "announcement", "newsletter",
        "digest", "report", "summary",
    ),
    Category.SOCIAL: (
        "invitation", "invite", "rsvp", "connect", "follow", "like", "share", "comment",
        "mention", "message", "friend", "follower", "connection",
    ),
    Category.PURCHASE: (
        "order", "purchase", "receipt", "invoice", "payment", "transaction",
        "subscription", "renewal", "billing", "refund", "confirmation #", "order #",
    ),
}


def _haystacks(summary: str, extracted: ExtractedData | None) -> list[str]:
    texts = [summary.lower()]
    if extracted is not None:
        serialized = extracted.serialized()
        if serialized:
            texts.append(serialized)
    return texts


def _any_keyword(keywords: tuple[str, ...], texts: list[str]) -> bool:
    return any(keyword in text for keyword in keywords for text in texts)


def _matches(pattern: Pattern, texts: list[str]) -> bool:
    if isinstance(pattern, str):
        return any(pattern in text for text in texts)
    return any(pattern.search(text) for text in texts)


def determine_action_required(summary: str, extracted: ExtractedData | None = None) -> bool:
    """True when the message asks something of the reader."""
    extracted = extracted or ExtractedData()
    if _any_keyword(ACTION_KEYWORDS, _haystacks(summary, extracted)):
        return True
    if any(pattern.search(summary) for pattern in QUESTION_PATTERNS) or extracted.questions:
        return True
    return bool(extracted.requires_action or extracted.action_items or extracted.next_steps)


def determine_priority(summary: str, extracted: ExtractedData | None = None) -> Priority:
    """Explicit priority wins; otherwise high/low keywords; otherwise medium."""
    if extracted is not None and extracted.priority is not None:
        return extracted.priority
    texts = _haystacks(summary, extracted)
    if _any_keyword(HIGH_PRIORITY_KEYWORDS, texts):
        return Priority.HIGH
    if _any_keyword(LOW_PRIORITY_KEYWORDS, texts):
        return Priority.LOW
    return Priority.MEDIUM


def extract_categories(summary: str, extracted: ExtractedData | None = None) -> list[str]:
    """De-duplicated category names, in first-seen order."""
    texts = _haystacks(summary, extracted)
    # Regexes also run against the original-case summary.
    regex_texts = [summary, *texts[1:]]

    found: dict[str, None] = {}
    if extracted is not None:
        for category in extracted.categories:
            if category:
                found[category] = None

    for category, patterns in CATEGORY_PATTERNS.items():
        if any(_matches(p, texts if isinstance(p, str) else regex_texts) for p in patterns):
            found[category.value] = None

    if determine_priority(summary, extracted) is Priority.HIGH:
        found[Category.IMPORTANT.value] = None
    return list(found)
