"""Prompt builders and the Anthropic tool schema for email processing."""

from collections.abc import Sequence
from html.parser import HTMLParser
from typing import Any

from mailsweep.mail.codec import NO_SUBJECT, format_address
from mailsweep.mail.types import Message

# Maximum characters of email body sent to the model, applied after HTML
# stripping so it bounds actual text content rather than raw markup.
BODY_CHAR_LIMIT = 4_000

NO_HISTORY = "No previous messages in this thread."
NO_ADDITIONAL_CONTEXT = "No additional context provided."


# ── HTML stripper ───────────────────────────────────────────────────────────────


class _HTMLStripper(HTMLParser):
    """Collects visible text nodes, skipping <script> and <style>."""

    def __init__(self) -> None:
        super().__init__()
        self._parts: list[str] = []
        self._skip = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in ("script", "style"):
            self._skip += 1

    def handle_endtag(self, tag: str) -> None:
        if tag in ("script", "style") and self._skip:
            self._skip -= 1

    def handle_data(self, data: str) -> None:
        text = data.strip()
        if text and not self._skip:
            self._parts.append(text)

    def get_text(self) -> str:
        return " ".join(self._parts)


def strip_html(text: str) -> str:
    """Return plain text from an HTML string.

    Input that doesn't look like HTML is returned unchanged.
    """
    if "<" not in text:
        return text
    stripper = _HTMLStripper()
    stripper.feed(text)
    stripper.close()
    return stripper.get_text()


def message_content(message: Message) -> str:
    """The text handed to the model for a message: plain body, else stripped HTML."""
    if message.body_text:
        return message.body_text
    if message.body_html:
        return strip_html(message.body_html)
    return ""


def _truncate(text: str) -> str:
    if len(text) <= BODY_CHAR_LIMIT:
        return text
    return text[:BODY_CHAR_LIMIT] + "\n[… email truncated …]"


# ── Tool definition ────────────────────────────────────────────────────────────

EXTRACTION_TOOL_NAME = "record_extracted_data"

#: Forced tool call used by extract_structured_data.
EXTRACTION_TOOL: dict[str, Any] = {
    "name": EXTRACTION_TOOL_NAME,
    "description": "Record structured data extracted from an email.",
    "input_schema": {
        "type": "object",
        "properties": {
            "priority": {
                "type": ["string", "null"],
                "enum": ["high", "medium", "low", None],
                "description": "How urgently the recipient should deal with it; null if unclear.",
            },
            "requires_action": {
                "type": "boolean",
                "description": "True if the sender expects the recipient to do or answer something.",
            },
            "action_items": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Concrete tasks asked of the recipient.",
            },
            "questions": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Questions the sender asks the recipient.",
            },
            "next_steps": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Agreed or proposed next steps.",
            },
            "categories": {
                "type": "array",
                "items": {
                    "type": "string",
                    "enum": [
                        "meeting", "question", "action_item", "document",
                        "notification", "social", "purchase",
                    ],
                },
            },
            "people": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Named people or organisations.",
            },
            "dates": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Dates, deadlines or time constraints mentioned.",
            },
        },
        "required": ["requires_action", "action_items", "questions", "categories"],
    },
}


# ── Prompt builders ────────────────────────────────────────────────────────────


def build_extraction_messages(content: str) -> list[dict[str, str]]:
    return [
        {
            "role": "user",
            "content": (
                f"Extract structured data from the following email and call "
                f"{EXTRACTION_TOOL_NAME} with your findings.\n\n" + _truncate(content)
            ),
        }
    ]


def build_summary_prompt(content: str) -> str:
    return (
        "Summarise the following email in two or three sentences. Mention any "
        "request, question or deadline addressed to the reader. Reply with the "
        "summary only.\n\n" + _truncate(content)
    )


def _format_history(history: Sequence[Message]) -> str:
    blocks = []
    for message in history:
        blocks.append(
            f"[{message.sent_at.isoformat()}] From: {format_address(message.from_)}\n"
            f"Subject: {message.subject or NO_SUBJECT}\n"
            f"{_truncate(message_content(message))}"
        )
    return "\n\n---\n\n".join(blocks)


def build_reply_prompt(
    message: Message,
    history: Sequence[Message],
    additional_context: str | None = None,
) -> str:
    """Prompt for drafting a reply to ``message``.

    ``history`` must already be in chronological order and must not include
    ``message`` itself.
    """
    lines = [
        "You are helping to draft a professional email response.",
        "Please compose a thoughtful reply to the following email thread.",
        "",
        "=== EMAIL DETAILS ===",
        f"Subject: {message.subject or NO_SUBJECT}",
        f"From: {format_address(message.from_)}",
        f"To: {', '.join(format_address(a) for a in message.to)}",
        f"Date: {message.sent_at.isoformat()}",
    ]
    if message.cc:
        lines.append(f"CC: {', '.join(format_address(a) for a in message.cc)}")
    lines += [
        f"Has Attachments: {'Yes' if message.attachments else 'No'}",
        "",
        "=== MESSAGE ===",
        _truncate(message_content(message)),
        "",
        "=== CONVERSATION HISTORY ===",
        _format_history(history) or NO_HISTORY,
        "",
        "=== ADDITIONAL CONTEXT ===",
        additional_context or NO_ADDITIONAL_CONTEXT,
        "",
        "=== INSTRUCTIONS ===",
        "Address every question and request in the message. Match the formality of "
        "the thread, keep it under 300 words, and ask for clarification where "
        "something is unclear. If the message needs no response, simply acknowledge it.",
        "Write only the body of the reply, starting with a greeting and ending with a "
        "professional closing.",
    ]
    return "\n".join(lines)
