"""Error taxonomy for the mail sync layer."""


class MailError(Exception):
    """Base class for every error raised by mailsweep.mail."""


class TransportError(MailError):
    """An outbound call failed (network error or HTTP error status).

    ``retryable`` is True for network failures and 5xx responses; the
    transport has already exhausted its retry policy by the time callers
    see one of those.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class AuthError(TransportError):
    """Credentials were rejected (401) or could not be refreshed."""

    def __init__(self, message: str, *, status_code: int | None = 401) -> None:
        super().__init__(message, status_code=status_code, retryable=False)


class ValidationError(MailError):
    """Caller-supplied input is malformed. Never retried."""


class ParseError(MailError):
    """A wire message could not be decoded at all."""


class CircuitOpenError(MailError):
    """The circuit breaker is open; the underlying call was not attempted."""
