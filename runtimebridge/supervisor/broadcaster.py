"""In-process publish/subscribe fan-out of supervisor notifications."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from runtimebridge.supervisor.models import Notification

logger = logging.getLogger("runtimebridge.supervisor.broadcaster")

SUBSCRIBER_QUEUE_SIZE = 1000


class Subscription:
    """One subscriber's ordered view of published notifications."""

    def __init__(self, max_queue_size: int = SUBSCRIBER_QUEUE_SIZE) -> None:
        self._queue: asyncio.Queue[Notification | None] = asyncio.Queue(maxsize=max_queue_size)
        self.closed = False
        self.dropped = 0

    def offer(self, notification: Notification) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(notification)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # Make room for the end-of-stream marker.
            self._queue.get_nowait()
            self._queue.put_nowait(None)

    async def get(self) -> Notification | None:
        """Next notification, or ``None`` once the subscription is closed."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Notification:
        notification = await self.get()
        if notification is None:
            raise StopAsyncIteration
        return notification


class NotificationBroadcaster:
    """Deliver every published notification to all current subscribers."""

    def __init__(self, *, max_queue_size: int = SUBSCRIBER_QUEUE_SIZE) -> None:
        self.max_queue_size = max_queue_size
        self._subscriptions: list[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self) -> tuple[Subscription, Callable[[], None]]:
        subscription = Subscription(self.max_queue_size)
        self._subscriptions.append(subscription)
        logger.debug("Subscriber added (active=%d)", len(self._subscriptions))

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
                logger.debug("Subscriber removed (active=%d)", len(self._subscriptions))
            subscription.close()

        return subscription, unsubscribe

    def publish(self, notification: Notification) -> None:
        for subscription in list(self._subscriptions):
            if not subscription.offer(notification):
                logger.warning("Subscriber queue full, dropping %s notification", notification.kind)

    def close(self) -> None:
        """End every subscription; used when the bridge shuts down."""
        subscriptions = list(self._subscriptions)
        self._subscriptions.clear()
        for subscription in subscriptions:
            subscription.close()
