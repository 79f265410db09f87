"""Gmail REST client: typed async API over httpx, guarded by TransportClient."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any, Protocol

import httpx

from mailsweep.mail.auth import OAuthConfig, OAuthTokenProvider
from mailsweep.mail.codec import decode_message
from mailsweep.mail.transport import DEFAULT_TIMEOUT_SECONDS, RetryPolicy, TransportClient
from mailsweep.mail.types import UNREAD_LABEL, Message

logger = logging.getLogger(__name__)

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me/"

#: Largest page the client asks the list endpoint for.
PROVIDER_PAGE_CAP = 100

# JSON-decoded response body
_Json = dict[str, Any]


class TokenSource(Protocol):
    async def get_access_token(self) -> str: ...


class GmailClient:
    """Thin async wrapper around the Gmail v1 REST endpoints.

    Every call goes through the shared TransportClient, so retries, backoff
    and the circuit breaker apply uniformly.  Use the `gmail_client()`
    context manager to construct and tear down correctly.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        transport: TransportClient,
        tokens: TokenSource,
    ) -> None:
        self._http = http
        self._transport = transport
        self._tokens = tokens

    @property
    def transport(self) -> TransportClient:
        return self._transport

    # ── Public API ─────────────────────────────────────────────────────────────

    async def get_profile(self) -> _Json:
        """Return the authenticated mailbox profile (emailAddress, totals)."""
        return await self._api("GET", "profile")

    async def list_message_ids(
        self,
        *,
        query: str = "",
        max_results: int = PROVIDER_PAGE_CAP,
        page_token: str | None = None,
        include_spam_trash: bool = False,
    ) -> tuple[list[str], str | None]:
        """Return one page of message IDs and the next page token (if any)."""
        params: dict[str, Any] = {
            "maxResults": min(max_results, PROVIDER_PAGE_CAP),
            "includeSpamTrash": str(include_spam_trash).lower(),
        }
        if query:
            params["q"] = query
        if page_token:
            params["pageToken"] = page_token
        data = await self._api("GET", "messages", params=params)
        ids = [
            str(m["id"])
            for m in data.get("messages") or []
            if isinstance(m, dict) and m.get("id")
        ]
        return ids, data.get("nextPageToken") or None

    async def get_raw_message(self, message_id: str) -> _Json:
        """Return the undecoded ``format=full`` message object."""
        return await self._api(
            "GET", f"messages/{message_id}", params={"format": "full"},
            description=f"get message {message_id}",
        )

    async def get_message(self, message_id: str) -> Message:
        """Fetch and decode a single message."""
        return decode_message(await self.get_raw_message(message_id))

    async def send_raw(self, raw: str, thread_id: str | None = None) -> _Json:
        """Send an already-encoded base64url RFC 822 message."""
        body: dict[str, Any] = {"raw": raw}
        if thread_id:
            body["threadId"] = thread_id
        return await self._api("POST", "messages/send", json=body, description="send message")

    async def batch_modify(
        self,
        message_ids: Sequence[str],
        *,
        add_label_ids: Sequence[str] = (),
        remove_label_ids: Sequence[str] = (),
    ) -> None:
        """Add/remove labels on up to 1000 messages in a single call."""
        if not message_ids:
            return
        await self._api(
            "POST",
            "messages/batchModify",
            json={
                "ids": list(message_ids),
                "addLabelIds": list(add_label_ids),
                "removeLabelIds": list(remove_label_ids),
            },
            description=f"modify {len(message_ids)} message(s)",
        )
        logger.debug("Modified labels on %d message(s)", len(message_ids))

    async def mark_as_read(self, message_ids: Sequence[str]) -> None:
        await self.batch_modify(message_ids, remove_label_ids=[UNREAD_LABEL])

    # ── Internal helpers ───────────────────────────────────────────────────────

    async def _api(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: _Json | None = None,
        description: str | None = None,
    ) -> _Json:
        """Perform one REST call through the transport and return parsed JSON."""

        async def call() -> _Json:
            # Fetch the token inside the call so a retry after refresh uses it.
            token = await self._tokens.get_access_token()
            response = await self._http.request(
                method,
                path,
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
            response.raise_for_status()
            if not response.content:
                return {}
            parsed = response.json()
            return parsed if isinstance(parsed, dict) else {}

        return await self._transport.request(call, description=description or f"{method} {path}")


@asynccontextmanager
async def gmail_client(
    *,
    oauth: OAuthConfig | None = None,
    policy: RetryPolicy | None = None,
    timeout: float | None = None,
    base_url: str = GMAIL_API_BASE,
) -> AsyncIterator[GmailClient]:
    """Async context manager that yields a ready-to-use GmailClient.

    Loads OAuth credentials, opens one pooled httpx client for the lifetime
    of the context, and wires token refresh into the transport's 401 path.

    Example::

        async with gmail_client() as gmail:
            message = await gmail.get_message("18c2...")
    """
    tokens = OAuthTokenProvider.from_config(oauth or OAuthConfig.from_env())
    if timeout is None:
        try:
            timeout = float(os.environ.get("TRANSPORT_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS))
        except ValueError:
            logger.warning("Invalid TRANSPORT_TIMEOUT_SECONDS; using %.0fs", DEFAULT_TIMEOUT_SECONDS)
            timeout = DEFAULT_TIMEOUT_SECONDS

    transport = TransportClient(
        "gmail",
        policy=policy or RetryPolicy.from_env(),
        on_auth_failure=tokens.refresh,
    )
    async with httpx.AsyncClient(base_url=base_url, timeout=timeout) as http:
        client = GmailClient(http, transport, tokens)
        logger.info("Gmail client ready (timeout=%.1fs)", timeout)
        try:
            yield client
        finally:
            transport.close()
