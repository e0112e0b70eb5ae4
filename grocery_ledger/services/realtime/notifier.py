"""
Realtime Change Notifier

Per-record change subscriptions. Given a record key, a subscriber gets a
live stream of full-record snapshots, one per committed write, in commit
order. There is no ordering guarantee across different keys.

DESIGN DECISION: A subscription is a cancellable async stream rather than a
callback. `subscribe(key)` hands back a Subscription that can be iterated
with `async for`; `close()` is the cancellation point. Resubscribing starts a
fresh stream seeded with the current snapshot.

Snapshots are deep-copied per subscriber, so no consumer can mutate state
another consumer (or the store) is holding.
"""

import asyncio
from collections import defaultdict
from typing import Optional

import structlog
from pydantic import BaseModel

from grocery_ledger.config import get_settings


logger = structlog.get_logger(__name__)

_CLOSED = object()


def group_key(group_id: str) -> str:
    return f"groups/{group_id}"


def user_key(user_id: str) -> str:
    return f"users/{user_id}"


class Subscription:
    """
    Handle on a live stream of snapshots for one record.

    Usage:
        subscription = await storage.subscribe_group(group_id)
        async for group in subscription:
            ...
        subscription.close()
    """

    def __init__(
        self,
        key: str,
        notifier: "RealtimeNotifier",
        queue_size: int = 0,
    ):
        self.key = key
        self._notifier = notifier
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _put(self, value: object) -> None:
        """Enqueue, dropping the oldest snapshot when the buffer is full."""
        try:
            self._queue.put_nowait(value)
        except asyncio.QueueFull:
            dropped = self._queue.get_nowait()
            if dropped is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                return
            logger.warning("snapshot_dropped", key=self.key)
            self._queue.put_nowait(value)

    def deliver(self, snapshot: BaseModel) -> None:
        if self._closed:
            return
        self._put(snapshot.model_copy(deep=True))

    async def next(self, timeout: Optional[float] = None) -> BaseModel:
        """
        Wait for the next snapshot.

        Raises:
            StopAsyncIteration: If the subscription was closed
            asyncio.TimeoutError: If nothing arrives within timeout
        """
        if timeout is None:
            value = await self._queue.get()
        else:
            value = await asyncio.wait_for(self._queue.get(), timeout)
        if value is _CLOSED:
            # Keep the marker so later readers stop too
            self._put(_CLOSED)
            raise StopAsyncIteration
        return value

    def pending(self) -> int:
        """Snapshots buffered and not yet consumed."""
        return self._queue.qsize()

    def close(self) -> None:
        """Stop delivery. Any reader blocked on the stream is released."""
        if self._closed:
            return
        self._closed = True
        self._notifier._unsubscribe(self)
        self._put(_CLOSED)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> BaseModel:
        return await self.next()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class RealtimeNotifier:
    """
    Fan-out of committed snapshots to subscribers, keyed by record.

    `publish` is synchronous and is called by the store while it still holds
    its commit lock, which is what makes delivery follow commit order.
    """

    def __init__(self, queue_size: Optional[int] = None):
        if queue_size is None:
            queue_size = get_settings().realtime.queue_size
        self._queue_size = queue_size
        self._subscribers: dict[str, list[Subscription]] = defaultdict(list)

    def subscribe(
        self,
        key: str,
        initial: Optional[BaseModel] = None,
    ) -> Subscription:
        """
        Open a new subscription on a record key.

        Args:
            key: Record key (see group_key / user_key)
            initial: Current snapshot to deliver first, if the record exists
        """
        subscription = Subscription(key, self, self._queue_size)
        self._subscribers[key].append(subscription)
        if initial is not None:
            subscription.deliver(initial)
        logger.debug("subscription_opened", key=key)
        return subscription

    def publish(self, key: str, snapshot: BaseModel) -> int:
        """
        Push a committed snapshot to every current subscriber of key.

        Returns the number of subscribers notified.
        """
        subscribers = list(self._subscribers.get(key, ()))
        for subscription in subscribers:
            subscription.deliver(snapshot)
        return len(subscribers)

    def subscriber_count(self, key: str) -> int:
        return len(self._subscribers.get(key, ()))

    def close_all(self) -> None:
        for subscriptions in list(self._subscribers.values()):
            for subscription in list(subscriptions):
                subscription.close()

    def _unsubscribe(self, subscription: Subscription) -> None:
        subscriptions = self._subscribers.get(subscription.key)
        if not subscriptions:
            return
        if subscription in subscriptions:
            subscriptions.remove(subscription)
        if not subscriptions:
            del self._subscribers[subscription.key]
        logger.debug("subscription_closed", key=subscription.key)
