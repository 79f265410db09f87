"""Publish/subscribe channel for agent events (action required, drafts, digests)."""

from __future__ import annotations

import inspect
import itertools
import logging
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

_HISTORY_LIMIT = 100


class NotificationType(str, Enum):
    ACTION_REQUIRED = "action_required"
    DRAFT_READY = "draft_ready"
    DIGEST_READY = "digest_ready"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    id: str
    type: NotificationType
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Subscriber = Callable[[Notification], "Awaitable[None] | None"]


class Subscription:
    """Handle returned by ``NotificationChannel.subscribe``."""

    def __init__(self, channel: NotificationChannel, callback: Subscriber,
                 types: frozenset[NotificationType] | None) -> None:
        self._channel = channel
        self.callback = callback
        self.types = types
        self.active = True

    def wants(self, notification: Notification) -> bool:
        return self.active and (self.types is None or notification.type in self.types)

    def unsubscribe(self) -> None:
        """Stop receiving notifications. Safe to call more than once."""
        if self.active:
            self.active = False
            self._channel._remove(self)


class NotificationChannel:
    """In-process notification fan-out.

    Subscribers may be plain functions or coroutine functions.  A subscriber
    that raises is logged and skipped; the publisher never sees the error.

    Usage::

        channel = NotificationChannel()
        sub = channel.subscribe(print, types=[NotificationType.DRAFT_READY])
        await channel.notify(NotificationType.DRAFT_READY, "Draft ready", "Re: Status")
        sub.unsubscribe()
    """

    def __init__(self, history_limit: int = _HISTORY_LIMIT) -> None:
        self._subscriptions: list[Subscription] = []
        self._history: deque[Notification] = deque(maxlen=history_limit)
        self._ids = itertools.count(1)

    def subscribe(
        self,
        callback: Subscriber,
        types: Iterable[NotificationType] | None = None,
    ) -> Subscription:
        subscription = Subscription(self, callback, frozenset(types) if types is not None else None)
        self._subscriptions.append(subscription)
        return subscription

    @property
    def history(self) -> list[Notification]:
        """Most recent notifications, oldest first."""
        return list(self._history)

    async def notify(
        self,
        type: NotificationType,
        title: str,
        message: str,
        **data: Any,
    ) -> Notification:
        notification = Notification(
            id=f"notif-{next(self._ids)}",
            type=type,
            title=title,
            message=message,
            data=data,
        )
        await self.publish(notification)
        return notification

    async def publish(self, notification: Notification) -> None:
        self._history.append(notification)
        logger.debug("Notification %s: %s", notification.type.value, notification.title)
        # Copy: callbacks may unsubscribe while we iterate.
        for subscription in list(self._subscriptions):
            if not subscription.wants(notification):
                continue
            try:
                result = subscription.callback(notification)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                logger.error("Notification subscriber failed for %s: %s",
                             notification.type.value, exc, exc_info=True)

    def _remove(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass
