"""
In-process change feed for single-record watches.

Listeners register against a ``(collection, record_id)`` key and receive the
record snapshot every time the store publishes a change for it.  A listener
may be a plain function or a coroutine function.  Delivery for a key happens
in publish order; listeners are awaited one after another.
"""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

Snapshot = dict[str, Any]
Listener = Callable[[Snapshot], Union[Awaitable[None], None]]


class Subscription:
    """Cancellable handle for one listener.

    The holder owns the subscription and must call :meth:`unsubscribe` when
    replacing or disposing it.  Unsubscribing is synchronous and idempotent.
    """

    def __init__(self, feed: "ChangeFeed", collection: str, record_id: str, listener: Listener):
        self._feed = feed
        self.collection = collection
        self.record_id = record_id
        self.listener = listener
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._feed._discard(self)

    def __repr__(self) -> str:
        state = "active" if self._active else "closed"
        return f"<Subscription {self.collection}/{self.record_id} {state}>"


class ChangeFeed:
    def __init__(self) -> None:
        self._subscriptions: dict[tuple[str, str], list[Subscription]] = defaultdict(list)

    def listen(self, collection: str, record_id: str, listener: Listener) -> Subscription:
        subscription = Subscription(self, collection, record_id, listener)
        self._subscriptions[(collection, record_id)].append(subscription)
        logger.debug("Listener added for %s/%s", collection, record_id)
        return subscription

    async def deliver(self, subscription: Subscription, snapshot: Snapshot) -> None:
        """Hand *snapshot* to a single listener, if it is still active."""
        if not subscription.active:
            return
        try:
            result = subscription.listener(snapshot)
            if inspect.isawaitable(result):
                await result
        except Exception:
            # A failing listener must not break the write or other watchers
            logger.exception(
                "Listener for %s/%s failed", subscription.collection, subscription.record_id
            )

    async def publish(self, collection: str, record_id: str, snapshot: Snapshot) -> int:
        """Deliver *snapshot* to every active listener; return how many ran."""
        delivered = 0
        for subscription in list(self._subscriptions.get((collection, record_id), ())):
            # A listener may cancel another one mid-delivery
            if not subscription.active:
                continue
            await self.deliver(subscription, snapshot)
            delivered += 1
        return delivered

    def listener_count(self, collection: Optional[str] = None, record_id: Optional[str] = None) -> int:
        return sum(
            len(subs)
            for (coll, rid), subs in self._subscriptions.items()
            if (collection is None or coll == collection) and (record_id is None or rid == record_id)
        )

    def _discard(self, subscription: Subscription) -> None:
        key = (subscription.collection, subscription.record_id)
        subs = self._subscriptions.get(key)
        if not subs:
            return
        try:
            subs.remove(subscription)
        except ValueError:
            pass
        if not subs:
            del self._subscriptions[key]
        logger.debug("Listener removed for %s/%s", *key)
