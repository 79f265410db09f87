"""Message codec: provider wire JSON to Message, Draft to base64url RFC 822.

Decoding walks the payload tree with an explicit accumulator so that one
malformed leaf part is skipped (and logged) without losing the rest of the
message.  Encoding produces the ``raw`` field expected by
``users.messages.send``.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email import policy
from email.header import Header, decode_header, make_header
from email.message import Message as _EmailMessage
from email.parser import BytesParser
from email.utils import formataddr, parsedate_to_datetime
from typing import Any

from mailsweep.mail.errors import ParseError
from mailsweep.mail.types import (
    UNREAD_LABEL,
    Address,
    Attachment,
    Draft,
    Message,
    MessagePart,
)

logger = logging.getLogger(__name__)

NO_SUBJECT = "(No subject)"
NO_CONTENT = "(No content)"
UNKNOWN_SENDER = Address(email="unknown@example.com")

_CRLF = "\r\n"
_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")

# Split on commas that are followed by an even number of double quotes,
# i.e. commas that are not inside a quoted display name.
_ADDRESS_SPLIT = re.compile(r',(?=(?:[^"]*"[^"]*")*[^"]*$)')
# `"Display Name" <email>` or a bare `email`.
_ADDRESS_PATTERN = re.compile(r"^(?:(.*?)\s*<)?([^<>]+)>?$")

_BOUNDARY_ALPHABET = string.ascii_lowercase + string.digits


# ── Address headers ────────────────────────────────────────────────────────────


def parse_address(value: str | None) -> Address | None:
    """Parse one ``"Name" <email>`` or bare-email string. None if unusable."""
    if not value or not value.strip():
        return None
    match = _ADDRESS_PATTERN.match(value.strip())
    if not match:
        return None
    name, email = match.groups()
    email = email.strip()
    if not email:
        return None
    name = name.strip().strip('"').strip() if name else None
    return Address(email=email, display_name=name or None)


def parse_address_list(value: str | None) -> list[Address]:
    """Parse a comma-separated address header, ignoring commas inside quotes."""
    if not value:
        return []
    addresses: list[Address] = []
    for chunk in _ADDRESS_SPLIT.split(value):
        address = parse_address(chunk)
        if address is not None:
            addresses.append(address)
    return addresses


def format_address(address: Address) -> str:
    """Render an address for an outgoing header; non-ASCII names are RFC 2047 encoded."""
    if not address.display_name:
        return address.email
    if address.display_name.isascii():
        return f'"{address.display_name}" <{address.email}>'
    return formataddr((address.display_name, address.email), charset="utf-8")


# ── Decode ─────────────────────────────────────────────────────────────────────


@dataclass
class _PartAccumulator:
    """State threaded through the payload walk."""

    body_text: str | None = None
    body_html: str | None = None
    attachments: list[Attachment] = field(default_factory=list)
    skipped: int = 0


def _b64url_decode(data: str) -> bytes:
    padded = data + "=" * (-len(data) % 4)
    return base64.b64decode(padded, altchars=b"-_", validate=True)


def _charset(part: MessagePart) -> str:
    content_type = part.header("Content-Type")
    if not content_type:
        return "utf-8"
    probe = _EmailMessage()
    probe["Content-Type"] = content_type
    return probe.get_content_charset() or "utf-8"


def _decode_text(content: bytes, charset: str) -> str:
    try:
        return content.decode(charset, errors="replace")
    except LookupError:
        logger.debug("Unknown charset %r; falling back to utf-8", charset)
        return content.decode("utf-8", errors="replace")


def _walk(part: MessagePart, acc: _PartAccumulator, parent_type: str = "") -> None:
    mime_type = (part.mime_type or parent_type).lower()

    if part.is_multipart or part.parts:
        for child in part.parts:
            _walk(child, acc, mime_type)
        return

    if not part.data:
        return

    try:
        content = _b64url_decode(part.data)
    except (binascii.Error, ValueError) as exc:
        acc.skipped += 1
        logger.warning(
            "Skipping malformed %s part %r: %s", mime_type or "untyped", part.filename, exc
        )
        return

    if mime_type == "text/plain" and not part.filename:
        if not acc.body_text:
            acc.body_text = _decode_text(content, _charset(part))
    elif mime_type == "text/html" and not part.filename:
        if not acc.body_html:
            acc.body_html = _decode_text(content, _charset(part))
    elif part.filename:
        acc.attachments.append(
            Attachment(
                filename=part.filename,
                mime_type=mime_type or "application/octet-stream",
                size_bytes=part.size if part.size is not None else len(content),
                content=content,
                content_id=part.header("Content-ID"),
            )
        )


def _sent_at(wire: dict[str, Any], date_header: str | None) -> datetime:
    internal = wire.get("internalDate")
    if internal is not None:
        try:
            return datetime.fromtimestamp(int(internal) / 1000, tz=timezone.utc)
        except (TypeError, ValueError, OverflowError):
            pass
    if date_header:
        try:
            parsed = parsedate_to_datetime(date_header)
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        except (TypeError, ValueError, OverflowError):
            pass
    return datetime.fromtimestamp(0, tz=timezone.utc)


def decode_message(wire: dict[str, Any]) -> Message:
    """Decode a provider message object (``format=full``) into a Message.

    Raises:
        ParseError: if the message has neither a payload nor any headers.
    """
    if not isinstance(wire, dict):
        raise ParseError(f"Expected a message object, got {type(wire).__name__}")

    payload_raw = wire.get("payload")
    payload = MessagePart.from_wire(payload_raw) if isinstance(payload_raw, dict) else None

    # Headers normally live on the root payload; some callers hoist them.
    root = MessagePart.from_wire({"headers": wire.get("headers")})
    headers = root.headers or (payload.headers if payload else ())
    if payload is None and not headers:
        raise ParseError(f"Message {wire.get('id')!r} has no payload and no headers")
    lookup = MessagePart(headers=headers)

    acc = _PartAccumulator()
    if payload is not None:
        _walk(payload, acc)
    if acc.skipped:
        logger.info("Message %s: skipped %d malformed part(s)", wire.get("id"), acc.skipped)

    labels = [str(label) for label in wire.get("labelIds") or [] if isinstance(label, str)]
    references = (lookup.header("References") or "").split()

    return Message(
        id=str(wire.get("id") or ""),
        thread_id=str(wire.get("threadId") or ""),
        subject=lookup.header("Subject") or NO_SUBJECT,
        from_=parse_address(lookup.header("From")) or UNKNOWN_SENDER,
        to=parse_address_list(lookup.header("To")),
        cc=parse_address_list(lookup.header("Cc")),
        bcc=parse_address_list(lookup.header("Bcc")),
        sent_at=_sent_at(wire, lookup.header("Date")),
        body_text=acc.body_text,
        body_html=acc.body_html,
        attachments=acc.attachments,
        labels=labels,
        is_read=UNREAD_LABEL not in labels,
        message_id_header=lookup.header("Message-ID"),
        in_reply_to=lookup.header("In-Reply-To") or None,
        references=references,
    )


# ── Raw RFC 822 ────────────────────────────────────────────────────────────────


def _b64url_encode(content: bytes) -> str:
    return base64.urlsafe_b64encode(content).rstrip(b"=").decode("ascii")


def _unfold(value: Any) -> str:
    try:
        return str(make_header(decode_header(str(value))))
    except (UnicodeError, LookupError, binascii.Error):
        return str(value)


def _email_part_to_wire(part: _EmailMessage) -> dict[str, Any]:
    node: dict[str, Any] = {
        "mimeType": part.get_content_type(),
        "filename": part.get_filename() or "",
        "headers": [{"name": k, "value": _unfold(v)} for k, v in part.items()],
    }
    if part.is_multipart():
        node["parts"] = [_email_part_to_wire(child) for child in part.get_payload()]
        return node
    content = part.get_payload(decode=True) or b""
    node["body"] = {"data": _b64url_encode(content), "size": len(content)}
    return node


def raw_to_wire(raw: str, *, message_id: str = "", thread_id: str = "") -> dict[str, Any]:
    """Convert a base64url RFC 822 message (``format=raw``) into the JSON wire shape."""
    try:
        content = _b64url_decode(raw)
    except (binascii.Error, ValueError) as exc:
        raise ParseError(f"Raw message is not valid base64url: {exc}") from exc
    parsed = BytesParser(policy=policy.compat32).parsebytes(content)
    return {
        "id": message_id,
        "threadId": thread_id,
        "labelIds": [],
        "payload": _email_part_to_wire(parsed),
    }


def decode_raw(raw: str, *, message_id: str = "", thread_id: str = "") -> Message:
    """Decode a base64url RFC 822 message, e.g. the output of ``encode_draft``."""
    return decode_message(raw_to_wire(raw, message_id=message_id, thread_id=thread_id))


# ── Encode ─────────────────────────────────────────────────────────────────────


def _encode_header_value(value: str) -> str:
    if value.isascii():
        return value
    return Header(value, "utf-8").encode(linesep=_CRLF)


def _crlf(text: str) -> str:
    return _LINE_BREAK_RE.sub(_CRLF, text)


def _transfer_encoding(text: str) -> str:
    return "7bit" if text.isascii() else "8bit"


def new_boundary() -> str:
    """Random multipart boundary token of the form ``_<random>_``."""
    token = "".join(secrets.choice(_BOUNDARY_ALPHABET) for _ in range(9))
    return f"_{token}_"


def _header_block(draft: Draft) -> list[str]:
    headers = [
        "MIME-Version: 1.0",
        f"To: {', '.join(format_address(a) for a in draft.to)}",
        f"Subject: {_encode_header_value(draft.subject or NO_SUBJECT)}",
    ]
    if draft.cc:
        headers.append(f"Cc: {', '.join(format_address(a) for a in draft.cc)}")
    if draft.bcc:
        headers.append(f"Bcc: {', '.join(format_address(a) for a in draft.bcc)}")
    if draft.in_reply_to:
        headers.append(f"In-Reply-To: {draft.in_reply_to}")
        headers.append(f"References: {' '.join(draft.references) or draft.in_reply_to}")
    return headers


def encode_draft(draft: Draft, *, boundary: str | None = None) -> str:
    """Serialize a Draft to unpadded base64url RFC 822 text.

    Both bodies → multipart/alternative; HTML only → single text/html part;
    otherwise a single text/plain part (placeholder text if both are empty).
    """
    headers = _header_block(draft)
    body_text = _crlf(draft.body_text or "")
    body_html = _crlf(draft.body_html or "")

    if body_html and body_text:
        boundary = boundary or new_boundary()
        headers.append(f'Content-Type: multipart/alternative; boundary="{boundary}"')
        body = _CRLF.join(
            [
                f"--{boundary}",
                "Content-Type: text/plain; charset=UTF-8",
                f"Content-Transfer-Encoding: {_transfer_encoding(body_text)}",
                "",
                body_text,
                f"--{boundary}",
                "Content-Type: text/html; charset=UTF-8",
                f"Content-Transfer-Encoding: {_transfer_encoding(body_html)}",
                "",
                body_html,
                f"--{boundary}--",
            ]
        )
    elif body_html:
        headers.append("Content-Type: text/html; charset=UTF-8")
        headers.append(f"Content-Transfer-Encoding: {_transfer_encoding(body_html)}")
        body = body_html
    else:
        headers.append("Content-Type: text/plain; charset=UTF-8")
        body = body_text or NO_CONTENT
        headers.append(f"Content-Transfer-Encoding: {_transfer_encoding(body)}")

    rfc822 = f"{_CRLF.join(headers)}{_CRLF}{_CRLF}{body}"
    return _b64url_encode(rfc822.encode("utf-8"))
