"""Resilient transport: retry with exponential backoff plus a circuit breaker.

``TransportClient.request`` wraps any zero-argument coroutine factory that
performs one HTTP call (normally an ``httpx`` request followed by
``raise_for_status()``).  Failures are classified from the exception:

  * httpx network error or timeout                → retryable
  * 5xx response                                  → retryable
  * 401 response                                  → refresh credentials, retry
  * any other 4xx                                 → propagate immediately
  * any other exception                           → propagate immediately

A MailError raised inside the call (for instance an AuthError from a token
refresh) is re-raised unchanged and does not count toward the breaker.

The breaker counts retryable and auth failures.  At ``failure_threshold``
it opens and a timer closes it again after ``cooldown`` seconds; there is
no half-open probe.  All breaker mutations go through ``_record()``, which
only runs on the event loop thread, so no locking is needed.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import TypeVar

import httpx

from mailsweep.mail.errors import AuthError, CircuitOpenError, MailError, TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_COOLDOWN_SECONDS = 60.0
DEFAULT_TIMEOUT_SECONDS = 5.0

#: Awaited on a 401 before the next attempt; should raise AuthError if it
#: cannot obtain fresh credentials.
AuthRefresher = Callable[[], Awaitable[None]]
Sleeper = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry configuration.

    ``max_attempts`` counts every call, including the first.  The delay
    before retry *n* is ``base_delay * 2**n`` seconds (2s, 4s, … by default).
    """

    max_attempts: int = 3
    base_delay: float = 1.0

    def delay_for(self, retry: int) -> float:
        return self.base_delay * (2**retry)

    @classmethod
    def from_env(cls) -> RetryPolicy:
        """Build a RetryPolicy from TRANSPORT_* environment variables."""
        default = cls()
        try:
            attempts = int(os.environ.get("TRANSPORT_MAX_ATTEMPTS", default.max_attempts))
            base = float(os.environ.get("TRANSPORT_BASE_DELAY_SECONDS", default.base_delay))
        except ValueError:
            logger.warning("Invalid TRANSPORT_* retry settings; using defaults")
            return default
        if attempts < 1 or base < 0:
            logger.warning("Out-of-range TRANSPORT_* retry settings; using defaults")
            return default
        return cls(max_attempts=attempts, base_delay=base)


@dataclass
class CircuitState:
    is_open: bool = False
    failure_count: int = 0
    last_failure_at: float | None = None  # time.monotonic()


@dataclass(frozen=True)
class _Failure:
    status_code: int | None
    retryable: bool
    auth: bool


def classify_failure(exc: BaseException) -> _Failure:
    """Classify an exception raised by a request call."""
    if isinstance(exc, httpx.TransportError):
        # No response at all: connection refused, DNS, timeout, reset …
        return _Failure(status_code=None, retryable=True, auth=False)
    if not isinstance(exc, httpx.HTTPStatusError):
        return _Failure(status_code=None, retryable=False, auth=False)
    status = exc.response.status_code
    if status == 401:
        return _Failure(status_code=status, retryable=False, auth=True)
    return _Failure(status_code=status, retryable=500 <= status < 600, auth=False)


class TransportClient:
    """Wraps outbound calls with retry, backoff and circuit breaking.

    One instance per upstream service; its CircuitState is private to it.

    Usage::

        transport = TransportClient("gmail", on_auth_failure=tokens.refresh)
        data = await transport.request(lambda: fetch_json(url))
    """

    def __init__(
        self,
        name: str,
        *,
        policy: RetryPolicy | None = None,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        on_auth_failure: AuthRefresher | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.name = name
        self.policy = policy or RetryPolicy()
        self._failure_threshold = failure_threshold
        self._cooldown = cooldown
        self._on_auth_failure = on_auth_failure
        self._sleep = sleep
        self._circuit = CircuitState()
        self._reset_handle: asyncio.TimerHandle | None = None

    @property
    def state(self) -> CircuitState:
        """A snapshot of the breaker state."""
        return replace(self._circuit)

    async def request(self, call: Callable[[], Awaitable[T]], *, description: str = "request") -> T:
        """Run ``call`` under the retry policy and circuit breaker.

        Raises:
            CircuitOpenError: breaker is open (``call`` is not invoked), or
                it opened while this request was failing.
            AuthError: 401 persisted across refresh, or refresh failed.
            TransportError: any other failure once retries are exhausted.
        """
        if self._circuit.is_open:
            raise CircuitOpenError(f"[{self.name}] circuit open; refusing {description}")

        attempt = 1
        while True:
            logger.debug("[%s] %s (attempt %d/%d)", self.name, description, attempt,
                         self.policy.max_attempts)
            try:
                result = await call()
            except (asyncio.CancelledError, MailError):
                raise
            except Exception as exc:
                failure = classify_failure(exc)
                counted = failure.retryable or failure.auth
                if counted:
                    self._record(failed=True)
                    if self._circuit.is_open:
                        raise CircuitOpenError(
                            f"[{self.name}] circuit opened after {description} failed: {exc}"
                        ) from exc

                if not counted:
                    raise TransportError(
                        f"[{self.name}] {description} failed: {exc}",
                        status_code=failure.status_code,
                        retryable=False,
                    ) from exc

                if attempt >= self.policy.max_attempts:
                    logger.error("[%s] %s failed after %d attempt(s): %s",
                                 self.name, description, attempt, exc)
                    if failure.auth:
                        raise AuthError(f"[{self.name}] {description} unauthorized: {exc}") from exc
                    raise TransportError(
                        f"[{self.name}] {description} failed: {exc}",
                        status_code=failure.status_code,
                        retryable=True,
                    ) from exc

                if failure.auth:
                    logger.warning("[%s] %s unauthorized; refreshing credentials", self.name,
                                   description)
                    await self._refresh_auth()
                else:
                    delay = self.policy.delay_for(attempt)
                    logger.warning(
                        "[%s] Retry %d/%d for %s in %.1fs (%s)",
                        self.name,
                        attempt,
                        self.policy.max_attempts - 1,
                        description,
                        delay,
                        exc,
                    )
                    await self._sleep(delay)
                attempt += 1
                continue

            self._record(failed=False)
            return result

    def close(self) -> None:
        """Cancel a pending breaker reset (e.g. on shutdown)."""
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None

    # ── Internal ───────────────────────────────────────────────────────────────

    async def _refresh_auth(self) -> None:
        if self._on_auth_failure is None:
            return
        await self._on_auth_failure()

    def _record(self, *, failed: bool) -> None:
        """The single place where CircuitState changes after a call."""
        circuit = self._circuit
        if not failed:
            if circuit.failure_count or circuit.is_open:
                logger.info("[%s] Circuit breaker closed", self.name)
            circuit.failure_count = 0
            circuit.is_open = False
            return

        circuit.failure_count += 1
        circuit.last_failure_at = time.monotonic()
        if circuit.failure_count >= self._failure_threshold and not circuit.is_open:
            circuit.is_open = True
            logger.error(
                "[%s] Circuit breaker opened after %d failures; cooling down %.0fs",
                self.name,
                circuit.failure_count,
                self._cooldown,
            )
            self._schedule_reset()

    def _schedule_reset(self) -> None:
        self.close()
        loop = asyncio.get_running_loop()
        self._reset_handle = loop.call_later(self._cooldown, self._reset)

    def _reset(self) -> None:
        self._reset_handle = None
        self._circuit.is_open = False
        self._circuit.failure_count = 0
        logger.info("[%s] Circuit breaker reset", self.name)
