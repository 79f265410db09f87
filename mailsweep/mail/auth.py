"""OAuth access tokens for the Gmail REST API.

google-auth's refresh call is synchronous, so it runs in a worker thread via
``asyncio.to_thread`` to keep the event loop free.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from mailsweep.mail.errors import AuthError

logger = logging.getLogger(__name__)

GMAIL_SCOPES: list[str] = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.compose",
]
_TOKEN_URI = "https://oauth2.googleapis.com/token"


@dataclass(frozen=True)
class OAuthConfig:
    """Where to find Gmail OAuth credentials."""

    token_path: Path = Path("token.json")
    credentials_path: Path = Path("credentials.json")
    client_id: str = ""
    client_secret: str = ""
    refresh_token: str = ""

    @classmethod
    def from_env(cls) -> OAuthConfig:
        return cls(
            token_path=Path(os.environ.get("GMAIL_TOKEN_PATH", "token.json")),
            credentials_path=Path(os.environ.get("GMAIL_CREDENTIALS_PATH", "credentials.json")),
            client_id=os.environ.get("GOOGLE_OAUTH_CLIENT_ID", ""),
            client_secret=os.environ.get("GOOGLE_OAUTH_CLIENT_SECRET", ""),
            refresh_token=os.environ.get("GOOGLE_OAUTH_REFRESH_TOKEN", ""),
        )


def load_credentials(config: OAuthConfig) -> Credentials:
    """Load stored user credentials from the token file or the environment.

    Raises:
        AuthError: if neither source provides a refresh token.
    """
    if config.token_path.exists():
        return Credentials.from_authorized_user_file(str(config.token_path), scopes=GMAIL_SCOPES)
    if config.refresh_token and config.client_id and config.client_secret:
        return Credentials(
            token=None,
            refresh_token=config.refresh_token,
            token_uri=_TOKEN_URI,
            client_id=config.client_id,
            client_secret=config.client_secret,
            scopes=GMAIL_SCOPES,
        )
    raise AuthError(
        f"No Gmail credentials: {config.token_path} not found and "
        "GOOGLE_OAUTH_* refresh credentials are not set. Run `mailsweep auth` first.",
        status_code=None,
    )


class OAuthTokenProvider:
    """Hands out bearer tokens and refreshes them on expiry or on demand.

    ``refresh`` is the auth-refresh callback given to TransportClient.
    """

    def __init__(self, credentials: Credentials, token_path: Path | None = None) -> None:
        self._credentials = credentials
        self._token_path = token_path
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: OAuthConfig) -> OAuthTokenProvider:
        return cls(load_credentials(config), token_path=config.token_path)

    async def get_access_token(self) -> str:
        """Return a valid access token, refreshing first if it has expired."""
        if not self._credentials.valid:
            await self.refresh()
        return str(self._credentials.token)

    async def refresh(self) -> None:
        """Force a token refresh.

        Raises:
            AuthError: the refresh grant was rejected (e.g. ``invalid_grant``).
        """
        async with self._lock:
            try:
                await asyncio.to_thread(self._credentials.refresh, Request())
            except RefreshError as exc:
                logger.error("Gmail token refresh failed: %s", exc)
                raise AuthError(
                    f"Authentication token is invalid or has been revoked: {exc}",
                    status_code=None,
                ) from exc
            logger.info("Gmail access token refreshed")
            self._persist()

    def _persist(self) -> None:
        if self._token_path is None or not self._token_path.exists():
            return
        self._token_path.write_text(self._credentials.to_json(), encoding="utf-8")


def run_installed_app_flow(config: OAuthConfig) -> Path:
    """Interactive consent in the browser; writes the token file and returns its path."""
    # Imported lazily: only the `auth` command needs it.
    from google_auth_oauthlib.flow import InstalledAppFlow

    if not config.credentials_path.exists():
        raise AuthError(
            f"Gmail client secrets file not found: {config.credentials_path}",
            status_code=None,
        )
    flow = InstalledAppFlow.from_client_secrets_file(
        str(config.credentials_path), scopes=GMAIL_SCOPES
    )
    credentials = flow.run_local_server(port=0)
    config.token_path.parent.mkdir(parents=True, exist_ok=True)
    config.token_path.write_text(credentials.to_json(), encoding="utf-8")
    logger.info("Wrote Gmail token to %s", config.token_path)
    return config.token_path
